from typing import Dict, Optional

from ..enums import Capability, Provider
from ..schemas.token_schemas import ExternalIdentity
from .base import ProviderAdapter

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


class GoogleAdapter(ProviderAdapter):
    provider = Provider.GOOGLE
    capabilities = frozenset(
        {
            Capability.AUTH_URL,
            Capability.CODE_EXCHANGE,
            Capability.USER_INFO,
            Capability.REFRESH,
            Capability.REVOKE,
        }
    )

    authorize_endpoint = GOOGLE_AUTH_URL
    token_endpoint = GOOGLE_TOKEN_URL
    userinfo_endpoint = GOOGLE_USERINFO_URL
    revoke_endpoint = GOOGLE_REVOKE_URL

    default_scopes = ("openid", "email", "profile")
    required_scopes = ("openid", "email")
    uses_pkce = True

    def _extra_authorization_params(self) -> Dict[str, str]:
        # offline + consent so Google issues a refresh token on every link
        return {"access_type": "offline", "prompt": "consent", "include_granted_scopes": "true"}

    def user_info(
        self, access_token: str, id_token: Optional[str] = None, timeout: Optional[float] = None
    ) -> ExternalIdentity:
        response = self._send(
            "GET", self.userinfo_endpoint, "user_info", timeout, headers=self._bearer(access_token)
        )
        data = self._json_payload(response, "user_info")

        # v2 userinfo says id/verified_email, the OIDC endpoint sub/email_verified
        subject = data.get("sub") or data.get("id")
        verified = data.get("email_verified", data.get("verified_email"))
        if not subject:
            raise self._malformed("user_info")
        return self._identity(
            subject_id=subject,
            email=data.get("email"),
            email_verified=verified,
            display_name=data.get("name"),
            avatar_url=data.get("picture"),
        )

    def revoke(self, token: str, timeout: Optional[float] = None) -> None:
        # Google revokes by token alone; client credentials are not accepted here
        response = self._send(
            "POST", self.revoke_endpoint, "revoke", timeout, data={"token": token}
        )
        self._check_status(response, "revoke")
