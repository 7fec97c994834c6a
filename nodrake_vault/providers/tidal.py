from typing import Optional

from ..enums import Provider
from ..schemas.token_schemas import ExternalIdentity
from .base import ProviderAdapter

TIDAL_AUTH_URL = "https://auth.tidal.com/v1/oauth2/authorize"
TIDAL_TOKEN_URL = "https://auth.tidal.com/v1/oauth2/token"
TIDAL_API_URL = "https://api.tidal.com/v1"


class TidalAdapter(ProviderAdapter):
    provider = Provider.TIDAL

    authorize_endpoint = TIDAL_AUTH_URL
    token_endpoint = TIDAL_TOKEN_URL
    userinfo_endpoint = f"{TIDAL_API_URL}/sessions"

    default_scopes = (
        "r_usr",
        "w_usr",
        "r_sub",
        "r_collection",
        "w_collection",
        "r_playlist",
        "w_playlist",
    )
    required_scopes = ("r_usr",)
    uses_pkce = True

    def user_info(
        self, access_token: str, id_token: Optional[str] = None, timeout: Optional[float] = None
    ) -> ExternalIdentity:
        """
        Resolve the session to a user id, then fetch the profile.

        The profile lookup needs the session's country code.
        """
        headers = self._bearer(access_token)
        response = self._send("GET", self.userinfo_endpoint, "user_info", timeout, headers=headers)
        session_info = self._json_payload(response, "user_info")
        user_id = session_info.get("userId")
        if not user_id:
            raise self._malformed("user_info")

        response = self._send(
            "GET",
            f"{TIDAL_API_URL}/users/{user_id}",
            "user_info",
            timeout,
            headers=headers,
            params={"countryCode": session_info.get("countryCode") or "US"},
        )
        profile = self._json_payload(response, "user_info")

        name = " ".join(
            part
            for part in (profile.get("firstName"), profile.get("lastName"))
            if isinstance(part, str) and part
        )
        return self._identity(
            subject_id=profile.get("id") or user_id,
            email=profile.get("email"),
            email_verified=None,
            display_name=name or profile.get("username"),
            avatar_url=profile.get("picture"),
        )
