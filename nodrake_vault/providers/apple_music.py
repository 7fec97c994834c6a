"""
Apple Music via MusicKit.

There is no OAuth server here: the hosted MusicKit page authorizes the user
and posts back a Music User Token, which arrives as the callback ``code``.
That token does not expire and cannot be refreshed. API calls carry both a
developer token (an ES256 JWT we sign) and the Music User Token.

Apple Music exposes no user id, so identities from this adapter can link an
existing account but cannot log anyone in.
"""

import hashlib
import threading
import time
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

from jose import jwt

from ..enums import Capability, Provider, ProviderErrorKind
from ..schemas.token_schemas import ExternalIdentity, TokenSet
from .base import ProviderAdapter

APPLE_MUSIC_API_URL = "https://api.music.apple.com"

DEVELOPER_TOKEN_LIFETIME_SECONDS = 3600
# Re-sign once fewer than this many seconds remain
DEVELOPER_TOKEN_RENEW_SECONDS = 300


class AppleMusicAdapter(ProviderAdapter):
    provider = Provider.APPLE_MUSIC
    capabilities = frozenset({Capability.AUTH_URL, Capability.CODE_EXCHANGE, Capability.USER_INFO})

    userinfo_endpoint = f"{APPLE_MUSIC_API_URL}/v1/me/storefront"

    default_scopes = ("library-read", "library-modify")
    supports_login = False

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._developer_token: Optional[Tuple[str, float]] = None
        self._developer_token_lock = threading.Lock()

    def validate_config(self) -> None:
        for field in ("team_id", "key_id", "private_key", "authorize_url"):
            if not getattr(self.config, field):
                self._invalid_config(field, f"{field} is required")

    def authorization_url(
        self, redirect_uri: str, state: str, code_challenge: Optional[str] = None
    ) -> str:
        params = {"client_id": self.config.client_id, "redirect_uri": redirect_uri, "state": state}
        return f"{self.config.authorize_url}?{urlencode(params)}"

    def developer_token(self, now: Optional[float] = None) -> str:
        """Return the cached developer token, signing a new one when it is close to expiry."""
        now = now if now is not None else time.time()
        with self._developer_token_lock:
            if self._developer_token is not None:
                token, expires_at = self._developer_token
                if expires_at - now > DEVELOPER_TOKEN_RENEW_SECONDS:
                    return token

            issued_at = int(now)
            expires_at = issued_at + DEVELOPER_TOKEN_LIFETIME_SECONDS
            private_key = (self.config.signing_key() or "").replace("\\n", "\n")
            token = jwt.encode(
                {"iss": self.config.team_id, "iat": issued_at, "exp": expires_at},
                private_key,
                algorithm="ES256",
                headers={"kid": self.config.key_id},
            )
            self._developer_token = (token, float(expires_at))
            return token

    def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TokenSet:
        # The callback code already is the Music User Token
        if not code or not code.strip():
            raise self._error(
                ProviderErrorKind.REJECTED, "missing_music_user_token", "exchange_code"
            )
        return self._parse_token_set(
            {"access_token": code, "scope": " ".join(self.scopes)}, "exchange_code"
        )

    def user_info(
        self, access_token: str, id_token: Optional[str] = None, timeout: Optional[float] = None
    ) -> ExternalIdentity:
        """Validate the Music User Token against the storefront endpoint."""
        response = self._send(
            "GET",
            self.userinfo_endpoint,
            "user_info",
            timeout,
            headers=self._music_headers(access_token),
        )
        self._json_payload(response, "user_info")
        digest = hashlib.sha256(access_token.encode("utf-8")).hexdigest()
        return self._identity(subject_id=f"mut_{digest[:32]}")

    def _music_headers(self, music_user_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.developer_token()}",
            "Music-User-Token": music_user_token,
            "Accept": "application/json",
        }
