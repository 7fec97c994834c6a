from typing import Dict, Optional, Tuple

from ..enums import Provider
from ..schemas.token_schemas import ExternalIdentity
from .base import ProviderAdapter

SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_ME_URL = "https://api.spotify.com/v1/me"


class SpotifyAdapter(ProviderAdapter):
    provider = Provider.SPOTIFY

    authorize_endpoint = SPOTIFY_AUTH_URL
    token_endpoint = SPOTIFY_TOKEN_URL
    userinfo_endpoint = SPOTIFY_ME_URL

    default_scopes = (
        "user-read-email",
        "user-read-private",
        "user-library-read",
        "user-library-modify",
        "user-follow-read",
        "user-follow-modify",
        "playlist-read-private",
        "playlist-modify-private",
        "playlist-modify-public",
    )
    required_scopes = ("user-read-email",)
    uses_pkce = True

    def _client_auth(self) -> Optional[Tuple[str, str]]:
        return (self.config.client_id, self.config.secret() or "")

    def _client_auth_fields(self) -> Dict[str, str]:
        # Credentials travel in the Basic header only
        return {}

    def user_info(
        self, access_token: str, id_token: Optional[str] = None, timeout: Optional[float] = None
    ) -> ExternalIdentity:
        response = self._send(
            "GET", self.userinfo_endpoint, "user_info", timeout, headers=self._bearer(access_token)
        )
        data = self._json_payload(response, "user_info")
        if not data.get("id"):
            raise self._malformed("user_info")

        images = data.get("images") or []
        # Spotify does not say whether the account email was verified
        return self._identity(
            subject_id=data["id"],
            email=data.get("email"),
            email_verified=None,
            display_name=data.get("display_name"),
            avatar_url=images[0].get("url") if images and isinstance(images[0], dict) else None,
        )
