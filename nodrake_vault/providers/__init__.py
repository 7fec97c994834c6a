"""Provider adapters and their HTTP transport."""

from .apple import AppleAdapter
from .apple_music import AppleMusicAdapter
from .base import ProviderAdapter
from .github import GitHubAdapter
from .google import GoogleAdapter
from .registry import ADAPTER_CLASSES, ProviderRegistry, build_adapter
from .spotify import SpotifyAdapter
from .tidal import TidalAdapter
from .transport import HttpResponse, HttpTransport, RequestsTransport, TransportError
from .youtube_music import YouTubeMusicAdapter

__all__ = [
    "ADAPTER_CLASSES",
    "AppleAdapter",
    "AppleMusicAdapter",
    "GitHubAdapter",
    "GoogleAdapter",
    "HttpResponse",
    "HttpTransport",
    "ProviderAdapter",
    "ProviderRegistry",
    "RequestsTransport",
    "SpotifyAdapter",
    "TidalAdapter",
    "TransportError",
    "YouTubeMusicAdapter",
    "build_adapter",
]
