from ..enums import Provider
from .google import GoogleAdapter

YOUTUBE_SCOPE = "https://www.googleapis.com/auth/youtube"
YOUTUBE_FORCE_SSL_SCOPE = "https://www.googleapis.com/auth/youtube.force-ssl"
YOUTUBE_READONLY_SCOPE = "https://www.googleapis.com/auth/youtube.readonly"


class YouTubeMusicAdapter(GoogleAdapter):
    """YouTube Music rides on Google OAuth with the YouTube Data API scopes added."""

    provider = Provider.YOUTUBE_MUSIC

    default_scopes = (
        "openid",
        "email",
        "profile",
        YOUTUBE_SCOPE,
        YOUTUBE_FORCE_SSL_SCOPE,
        YOUTUBE_READONLY_SCOPE,
    )
    required_scopes = ("openid", YOUTUBE_SCOPE)
