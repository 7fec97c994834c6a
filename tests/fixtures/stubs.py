"""
Test doubles for provider traffic.

FakeTransport replays scripted HTTP responses for adapter tests. StubAdapter
stands in for a whole provider in orchestrator tests: codes, identities and
refresh outcomes are scripted up front and every call is recorded.
"""

import json
import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qs, urlparse

from nodrake_vault.enums import Capability, Provider, ProviderErrorKind
from nodrake_vault.providers.base import ProviderAdapter
from nodrake_vault.providers.transport import HttpResponse, HttpTransport, TransportError
from nodrake_vault.schemas.provider_schemas import ProviderClientConfig
from nodrake_vault.schemas.token_schemas import ExternalIdentity, TokenSet

REDIRECT_URI = "https://app.nodrake.test/oauth/callback"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def json_response(status_code: int = 200, body: Any = None) -> HttpResponse:
    return HttpResponse(
        status_code=status_code,
        headers={"content-type": "application/json"},
        text=json.dumps(body if body is not None else {}),
    )


class FakeTransport(HttpTransport):
    """Returns queued responses in order and records every request."""

    def __init__(self, responses: Optional[List[Union[HttpResponse, Exception]]] = None):
        self.responses: List[Union[HttpResponse, Exception]] = list(responses or [])
        self.requests: List[Dict[str, Any]] = []

    def queue(self, status_code: int = 200, body: Any = None) -> "FakeTransport":
        self.responses.append(json_response(status_code, body))
        return self

    def queue_text(self, status_code: int, text: str) -> "FakeTransport":
        self.responses.append(HttpResponse(status_code=status_code, text=text))
        return self

    def fail(self, timed_out: bool = True) -> "FakeTransport":
        self.responses.append(TransportError("https://provider.test/", timed_out=timed_out))
        return self

    def request(
        self,
        method,
        url,
        *,
        params=None,
        data=None,
        json_body=None,
        headers=None,
        auth=None,
        timeout,
    ) -> HttpResponse:
        self.requests.append(
            {
                "method": method,
                "url": url,
                "params": dict(params or {}),
                "data": dict(data or {}),
                "json_body": json_body,
                "headers": dict(headers or {}),
                "auth": auth,
                "timeout": timeout,
            }
        )
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last_request(self) -> Dict[str, Any]:
        return self.requests[-1]


class StubAdapter(ProviderAdapter):
    """Scripted provider for orchestrator tests."""

    authorize_endpoint = "https://provider.test/authorize"
    token_endpoint = "https://provider.test/token"
    userinfo_endpoint = "https://provider.test/me"

    def __init__(
        self,
        provider: Provider = Provider.SPOTIFY,
        supports_login: bool = True,
        revocable: bool = True,
    ):
        super().__init__(
            ProviderClientConfig(client_id="stub-client", client_secret="stub-secret"),
            FakeTransport(),
        )
        self.provider = provider
        self.supports_login = supports_login
        self.uses_pkce = True
        self.capabilities = frozenset(
            {Capability.AUTH_URL, Capability.CODE_EXCHANGE, Capability.USER_INFO, Capability.REFRESH}
            | ({Capability.REVOKE} if revocable else set())
        )

        self._lock = threading.Lock()
        self._grants: Dict[str, TokenSet] = {}
        self._identities: Dict[str, ExternalIdentity] = {}

        self.exchange_error: Optional[ProviderErrorKind] = None
        self.user_info_errors: List[ProviderErrorKind] = []
        self.refresh_outcomes: List[Union[TokenSet, ProviderErrorKind]] = []
        self.refresh_delay = 0.0
        self.revoke_error: Optional[ProviderErrorKind] = None

        self.exchange_calls: List[Dict[str, Any]] = []
        self.user_info_calls = 0
        self.refresh_calls: List[str] = []
        self.revoked: List[str] = []
        self._refresh_counter = 0

    def grant(self, code: str, tokens: TokenSet, identity: ExternalIdentity) -> None:
        """Make ``code`` exchange for ``tokens`` belonging to ``identity``."""
        self._grants[code] = tokens
        self._identities[tokens.access_token] = identity

    def exchange_code(self, code, redirect_uri, code_verifier=None, timeout=None) -> TokenSet:
        self.exchange_calls.append(
            {"code": code, "redirect_uri": redirect_uri, "code_verifier": code_verifier}
        )
        if self.exchange_error is not None:
            raise self._error(self.exchange_error, "scripted", "exchange_code")
        if code not in self._grants:
            raise self._error(ProviderErrorKind.REJECTED, "invalid_grant", "exchange_code", 400)
        return self._grants[code]

    def user_info(self, access_token, id_token=None, timeout=None) -> ExternalIdentity:
        self.user_info_calls += 1
        if self.user_info_errors:
            raise self._error(self.user_info_errors.pop(0), "scripted", "user_info")
        return self._identities[access_token]

    def refresh(self, refresh_token, timeout=None) -> TokenSet:
        with self._lock:
            self.refresh_calls.append(refresh_token)
            outcome = self.refresh_outcomes.pop(0) if self.refresh_outcomes else None
            self._refresh_counter += 1
            counter = self._refresh_counter
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        if isinstance(outcome, ProviderErrorKind):
            raise self._error(outcome, outcome.value, "refresh")
        if outcome is None:
            outcome = TokenSet(access_token=f"refreshed-access-{counter}", expires_in_seconds=3600)
        return outcome

    def revoke(self, token, timeout=None) -> None:
        self.revoked.append(token)
        if self.revoke_error is not None:
            raise self._error(self.revoke_error, "scripted", "revoke")


def state_from_url(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def run_flow(lifecycle, provider: Provider, purpose, code: str, redirect_uri: str = REDIRECT_URI):
    """Begin a flow and complete it with ``code``, as a browser round trip would."""
    url = lifecycle.begin_flow(provider, redirect_uri, purpose)
    return lifecycle.complete_flow(provider, code, state_from_url(url), redirect_uri)
