"""
Sign in with Apple.

Apple has no static client secret: every token call carries a short-lived
ES256 JWT signed with the team's private key. Identity comes only from the
``id_token``, which is verified against Apple's published JWKS.
"""

import threading
import time
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt

from ..enums import Capability, Provider, ProviderErrorKind
from ..schemas.token_schemas import ExternalIdentity
from .base import ProviderAdapter

APPLE_ISSUER = "https://appleid.apple.com"
APPLE_AUTH_URL = f"{APPLE_ISSUER}/auth/authorize"
APPLE_TOKEN_URL = f"{APPLE_ISSUER}/auth/token"
APPLE_REVOKE_URL = f"{APPLE_ISSUER}/auth/revoke"
APPLE_KEYS_URL = f"{APPLE_ISSUER}/auth/keys"

CLIENT_SECRET_LIFETIME_SECONDS = 300
JWKS_CACHE_SECONDS = 24 * 3600


class AppleAdapter(ProviderAdapter):
    provider = Provider.APPLE
    capabilities = frozenset(
        {
            Capability.AUTH_URL,
            Capability.CODE_EXCHANGE,
            Capability.USER_INFO,
            Capability.REFRESH,
            Capability.REVOKE,
        }
    )

    authorize_endpoint = APPLE_AUTH_URL
    token_endpoint = APPLE_TOKEN_URL
    userinfo_endpoint = APPLE_KEYS_URL
    revoke_endpoint = APPLE_REVOKE_URL

    default_scopes = ("name", "email")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._jwks: List[Dict[str, Any]] = []
        self._jwks_fetched_at: Optional[float] = None
        self._jwks_lock = threading.Lock()

    def validate_config(self) -> None:
        for field in ("team_id", "key_id", "private_key"):
            if not getattr(self.config, field):
                self._invalid_config(field, f"{field} is required")
        self._check_required_scopes()

    def _extra_authorization_params(self) -> Dict[str, str]:
        # Apple only returns name/email scopes through a form POST callback
        return {"response_mode": "form_post"}

    # ==================== CLIENT AUTHENTICATION ====================

    def client_secret(self, now: Optional[int] = None) -> str:
        """Sign the client assertion Apple expects in place of a client secret."""
        issued_at = int(now if now is not None else time.time())
        claims = {
            "iss": self.config.team_id,
            "iat": issued_at,
            "exp": issued_at + CLIENT_SECRET_LIFETIME_SECONDS,
            "aud": APPLE_ISSUER,
            "sub": self.config.client_id,
        }
        # Keys pasted into env vars often carry literal \n
        private_key = (self.config.signing_key() or "").replace("\\n", "\n")
        return jwt.encode(
            claims, private_key, algorithm="ES256", headers={"kid": self.config.key_id}
        )

    def _client_auth_fields(self) -> Dict[str, str]:
        return {"client_id": self.config.client_id, "client_secret": self.client_secret()}

    # ==================== IDENTITY ====================

    def user_info(
        self, access_token: str, id_token: Optional[str] = None, timeout: Optional[float] = None
    ) -> ExternalIdentity:
        if not id_token:
            raise self._error(ProviderErrorKind.REJECTED, "missing_id_token", "user_info")

        try:
            kid = jwt.get_unverified_header(id_token).get("kid")
        except JWTError:
            raise self._error(ProviderErrorKind.REJECTED, "invalid_id_token", "user_info") from None

        key = self._signing_key(kid, timeout)
        if key is None:
            raise self._error(ProviderErrorKind.REJECTED, "unknown_signing_key", "user_info")

        try:
            claims = jwt.decode(
                id_token,
                key,
                algorithms=["RS256"],
                audience=self.config.client_id,
                issuer=APPLE_ISSUER,
                access_token=access_token,
            )
        except JWTError:
            raise self._error(ProviderErrorKind.REJECTED, "invalid_id_token", "user_info") from None

        if not claims.get("sub"):
            raise self._malformed("user_info")

        # Apple sends booleans as either JSON booleans or "true"/"false"
        verified = claims.get("email_verified")
        if isinstance(verified, str):
            verified = verified.lower() == "true"

        return self._identity(
            subject_id=claims["sub"],
            email=claims.get("email"),
            email_verified=verified,
        )

    def _signing_key(self, kid: Optional[str], timeout: Optional[float]) -> Optional[Dict[str, Any]]:
        """Find ``kid`` in the cached JWKS, refetching once if it is unknown or stale."""
        with self._jwks_lock:
            fresh = (
                self._jwks_fetched_at is not None
                and time.monotonic() - self._jwks_fetched_at < JWKS_CACHE_SECONDS
            )
            key = self._find_key(kid) if fresh else None
            if key is None:
                self._jwks = self._fetch_jwks(timeout)
                self._jwks_fetched_at = time.monotonic()
                key = self._find_key(kid)
            return key

    def _find_key(self, kid: Optional[str]) -> Optional[Dict[str, Any]]:
        for key in self._jwks:
            if key.get("kid") == kid:
                return key
        return None

    def _fetch_jwks(self, timeout: Optional[float]) -> List[Dict[str, Any]]:
        response = self._send(
            "GET", APPLE_KEYS_URL, "user_info", timeout, headers={"Accept": "application/json"}
        )
        keys = self._json_payload(response, "user_info").get("keys")
        if not isinstance(keys, list):
            raise self._malformed("user_info", response.status_code)
        return [k for k in keys if isinstance(k, dict)]
