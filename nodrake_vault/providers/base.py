"""
Base class for provider adapters.

An adapter turns one provider's OAuth dialect into the vault's vocabulary:
authorization URLs, ``TokenSet`` and ``ExternalIdentity``. All provider
failures leave an adapter as ``ProviderError`` with one of three kinds:

- UNAVAILABLE: no response, timeout, 429, 5xx, or an unparseable body
- INVALID_GRANT: a refresh call reported ``invalid_grant``
- REJECTED: any other refusal (4xx, or a 2xx carrying an ``error`` field)

Error reasons are short classifiers; response bodies are never propagated.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from pydantic import ValidationError as SchemaValidationError

from ..enums import Capability, Provider, ProviderErrorKind
from ..exceptions import ErrorCode, ProviderError, ValidationError
from ..schemas.provider_schemas import ProviderClientConfig
from ..schemas.token_schemas import ExternalIdentity, TokenSet
from ..utils.logger import get_logger
from .transport import HttpResponse, HttpTransport, TransportError

DEFAULT_TIMEOUT_SECONDS = 10.0


class ProviderAdapter(ABC):
    """Common OAuth 2.0 authorization-code mechanics; subclasses fill in the quirks."""

    provider: ClassVar[Provider]
    capabilities: ClassVar[FrozenSet[Capability]] = frozenset(
        {Capability.AUTH_URL, Capability.CODE_EXCHANGE, Capability.USER_INFO, Capability.REFRESH}
    )

    authorize_endpoint: ClassVar[str] = ""
    token_endpoint: ClassVar[str] = ""
    userinfo_endpoint: ClassVar[str] = ""
    revoke_endpoint: ClassVar[Optional[str]] = None

    default_scopes: ClassVar[Tuple[str, ...]] = ()
    required_scopes: ClassVar[Tuple[str, ...]] = ()
    scope_separator: ClassVar[str] = " "

    uses_pkce: ClassVar[bool] = False
    # Whether an identity from this provider is stable enough to log a user in
    supports_login: ClassVar[bool] = True

    def __init__(
        self,
        config: ProviderClientConfig,
        transport: HttpTransport,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.config = config
        self.transport = transport
        self.default_timeout = default_timeout
        self.logger = get_logger()

    # ==================== CONFIGURATION ====================

    @property
    def scopes(self) -> List[str]:
        return list(self.config.scopes or self.default_scopes)

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def validate_config(self) -> None:
        """
        Check the client registration is usable.

        Raises:
            ValidationError: Missing credentials or required scopes
        """
        if not self.config.secret():
            self._invalid_config("client_secret", "client secret is required")
        self._check_required_scopes()

    def _check_required_scopes(self) -> None:
        missing = [s for s in self.required_scopes if s not in self.scopes]
        if missing:
            self._invalid_config("scopes", f"missing required scopes: {' '.join(missing)}")

    def _invalid_config(self, field: str, reason: str) -> None:
        raise ValidationError(
            f"Invalid {self.provider.value} configuration: {reason}",
            field=field,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            provider=self.provider.value,
        )

    # ==================== AUTHORIZATION URL ====================

    def authorization_url(
        self, redirect_uri: str, state: str, code_challenge: Optional[str] = None
    ) -> str:
        """Build the URL the user agent is sent to. Pure: no network."""
        params: Dict[str, str] = {
            "client_id": self.config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
        }
        if self.uses_pkce and code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        params.update(self._extra_authorization_params())
        endpoint = self.config.authorize_url or self.authorize_endpoint
        return f"{endpoint}?{urlencode(params)}"

    def _extra_authorization_params(self) -> Dict[str, str]:
        return {}

    # ==================== TOKEN OPERATIONS ====================

    def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TokenSet:
        """Trade an authorization code for tokens. Not idempotent: never retried."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if self.uses_pkce and code_verifier:
            data["code_verifier"] = code_verifier
        return self._token_request(data, "exchange_code", timeout)

    def refresh(self, refresh_token: str, timeout: Optional[float] = None) -> TokenSet:
        """
        Obtain a new access token.

        The returned TokenSet's refresh_token is None when the provider kept the
        old one; callers must then keep what they have.
        """
        if not self.supports(Capability.REFRESH):
            raise self._unsupported("refresh")
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        return self._token_request(data, "refresh", timeout)

    @abstractmethod
    def user_info(
        self, access_token: str, id_token: Optional[str] = None, timeout: Optional[float] = None
    ) -> ExternalIdentity:
        """Identify the user behind ``access_token``."""

    def revoke(self, token: str, timeout: Optional[float] = None) -> None:
        """Invalidate ``token`` at the provider."""
        if not self.supports(Capability.REVOKE) or not self.revoke_endpoint:
            raise self._unsupported("revoke")
        response = self._send(
            "POST",
            self.revoke_endpoint,
            "revoke",
            timeout,
            data={"token": token, **self._client_auth_fields()},
        )
        self._check_status(response, "revoke")

    # ==================== HELPERS ====================

    def _client_auth_fields(self) -> Dict[str, str]:
        """Client credentials sent in the token request body."""
        return {"client_id": self.config.client_id, "client_secret": self.config.secret() or ""}

    def _client_auth(self) -> Optional[Tuple[str, str]]:
        """HTTP Basic credentials for the token endpoint, for providers that want them."""
        return None

    def _token_request(
        self, data: Dict[str, str], operation: str, timeout: Optional[float]
    ) -> TokenSet:
        auth = self._client_auth()
        body = dict(data)
        if auth is None:
            body.update(self._client_auth_fields())
        response = self._send(
            "POST",
            self.token_endpoint,
            operation,
            timeout,
            data=body,
            headers={"Accept": "application/json"},
            auth=auth,
        )
        payload = self._json_payload(response, operation)
        return self._parse_token_set(payload, operation)

    def _parse_token_set(self, payload: Mapping[str, Any], operation: str) -> TokenSet:
        if not payload.get("access_token"):
            raise self._malformed(operation)
        expires_in = payload.get("expires_in")
        try:
            return TokenSet(
                access_token=payload["access_token"],
                refresh_token=payload.get("refresh_token"),
                expires_in_seconds=int(expires_in) if expires_in not in (None, "") else None,
                id_token=payload.get("id_token"),
                scope=payload.get("scope"),
                token_type=payload.get("token_type") or "Bearer",
            )
        except (ValueError, TypeError, SchemaValidationError) as e:
            raise self._malformed(operation, cause=e) from e

    def _identity(self, **fields: Any) -> ExternalIdentity:
        """Build the identity from provider values; ones that do not fit are a malformed body."""
        try:
            return ExternalIdentity(**fields)
        except (ValueError, TypeError, SchemaValidationError) as e:
            raise self._malformed("user_info", cause=e) from e

    def _timeout(self, timeout: Optional[float]) -> float:
        return timeout if timeout is not None else self.default_timeout

    def _send(
        self,
        method: str,
        url: str,
        operation: str,
        timeout: Optional[float],
        **kwargs: Any,
    ) -> HttpResponse:
        try:
            return self.transport.request(method, url, timeout=self._timeout(timeout), **kwargs)
        except TransportError as e:
            raise self._error(
                ProviderErrorKind.UNAVAILABLE,
                "timeout" if e.timed_out else "network_error",
                operation,
                cause=e,
            ) from e

    def _json_payload(self, response: HttpResponse, operation: str) -> Dict[str, Any]:
        """Check the status, decode the body, and surface OAuth ``error`` fields."""
        self._check_status(response, operation)
        try:
            payload = response.json()
        except ValueError:
            raise self._malformed(operation, response.status_code) from None
        if not isinstance(payload, dict):
            raise self._malformed(operation, response.status_code)
        if payload.get("error"):
            raise self._error(
                self._classify_oauth_error(str(payload["error"]), operation),
                str(payload["error"]),
                operation,
                response.status_code,
            )
        return payload

    def _check_status(self, response: HttpResponse, operation: str) -> None:
        status = response.status_code
        if response.ok:
            return
        if status == 429 or status >= 500:
            raise self._error(ProviderErrorKind.UNAVAILABLE, f"http_{status}", operation, status)

        oauth_error = self._oauth_error_code(response)
        kind = self._classify_oauth_error(oauth_error, operation) if oauth_error else None
        raise self._error(
            kind or ProviderErrorKind.REJECTED, oauth_error or f"http_{status}", operation, status
        )

    @staticmethod
    def _oauth_error_code(response: HttpResponse) -> Optional[str]:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict) and isinstance(payload.get("error"), str):
            return payload["error"]
        return None

    @staticmethod
    def _classify_oauth_error(error: str, operation: str) -> ProviderErrorKind:
        if operation == "refresh" and error == "invalid_grant":
            return ProviderErrorKind.INVALID_GRANT
        if error in ("temporarily_unavailable", "server_error"):
            return ProviderErrorKind.UNAVAILABLE
        return ProviderErrorKind.REJECTED

    def _error(
        self,
        kind: ProviderErrorKind,
        reason: str,
        operation: str,
        http_status: Optional[int] = None,
        cause: Optional[Exception] = None,
    ) -> ProviderError:
        return ProviderError(
            self.provider.value,
            kind,
            reason,
            http_status=http_status,
            cause=cause,
            operation=operation,
        )

    def _malformed(
        self,
        operation: str,
        http_status: Optional[int] = None,
        cause: Optional[Exception] = None,
    ) -> ProviderError:
        return self._error(
            ProviderErrorKind.UNAVAILABLE, "malformed_response", operation, http_status, cause
        )

    def _unsupported(self, operation: str) -> ProviderError:
        return self._error(ProviderErrorKind.REJECTED, "unsupported_operation", operation)

    @staticmethod
    def _bearer(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
