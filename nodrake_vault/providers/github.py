from typing import Any, Dict, List, Optional

from ..enums import Capability, Provider, ProviderErrorKind
from ..exceptions import ProviderError
from ..schemas.token_schemas import ExternalIdentity
from .base import ProviderAdapter

GITHUB_AUTH_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"


class GitHubAdapter(ProviderAdapter):
    """
    GitHub OAuth apps.

    GitHub tokens do not expire and cannot be refreshed. The token endpoint
    answers 200 with an ``error`` field on failure, which the base class
    already classifies. The public profile email is not necessarily verified,
    so the verified primary address comes from ``/user/emails``.
    """

    provider = Provider.GITHUB
    capabilities = frozenset(
        {Capability.AUTH_URL, Capability.CODE_EXCHANGE, Capability.USER_INFO, Capability.REVOKE}
    )

    authorize_endpoint = GITHUB_AUTH_URL
    token_endpoint = GITHUB_TOKEN_URL
    userinfo_endpoint = f"{GITHUB_API_URL}/user"

    default_scopes = ("read:user", "user:email")
    required_scopes = ("user:email",)

    def user_info(
        self, access_token: str, id_token: Optional[str] = None, timeout: Optional[float] = None
    ) -> ExternalIdentity:
        headers = self._github_headers(access_token)
        response = self._send("GET", self.userinfo_endpoint, "user_info", timeout, headers=headers)
        profile = self._json_payload(response, "user_info")
        if not profile.get("id"):
            raise self._malformed("user_info")

        email, verified = profile.get("email"), None
        try:
            primary = self._primary_email(headers, timeout)
        except ProviderError as e:
            if e.kind != ProviderErrorKind.REJECTED:
                raise
            # Token lacks user:email; fall back to the public address, unverified
            self.logger.warning(
                "GitHub email lookup rejected, using public profile email",
                extra={"provider": self.provider.value, "reason": e.reason},
            )
        else:
            if primary is not None:
                email, verified = primary.get("email"), bool(primary.get("verified"))

        return self._identity(
            subject_id=profile["id"],
            email=email,
            email_verified=verified,
            display_name=profile.get("name") or profile.get("login"),
            avatar_url=profile.get("avatar_url"),
        )

    def _primary_email(
        self, headers: Dict[str, str], timeout: Optional[float]
    ) -> Optional[Dict[str, Any]]:
        response = self._send(
            "GET", f"{GITHUB_API_URL}/user/emails", "user_info", timeout, headers=headers
        )
        self._check_status(response, "user_info")
        try:
            emails: List[Dict[str, Any]] = response.json()
        except ValueError:
            raise self._malformed("user_info", response.status_code) from None
        if not isinstance(emails, list):
            raise self._malformed("user_info", response.status_code)

        for entry in emails:
            if isinstance(entry, dict) and entry.get("primary"):
                return entry
        return None

    def revoke(self, token: str, timeout: Optional[float] = None) -> None:
        """Delete the OAuth grant's token via the applications API."""
        response = self._send(
            "DELETE",
            f"{GITHUB_API_URL}/applications/{self.config.client_id}/token",
            "revoke",
            timeout,
            json_body={"access_token": token},
            headers={"Accept": "application/vnd.github+json"},
            auth=(self.config.client_id, self.config.secret() or ""),
        )
        self._check_status(response, "revoke")

    @staticmethod
    def _github_headers(access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
        }
