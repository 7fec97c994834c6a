"""
Provider dispatch.

``ADAPTER_CLASSES`` maps every ``Provider`` to its adapter class; the check at
import time keeps the table exhaustive as providers are added.
"""

import threading
from typing import Dict, List, Optional, Type

from ..enums import Provider
from ..exceptions import ErrorCode, ValidationError, not_found
from ..schemas.provider_schemas import ProviderClientConfig
from ..utils.logger import get_logger
from .apple import AppleAdapter
from .apple_music import AppleMusicAdapter
from .base import DEFAULT_TIMEOUT_SECONDS, ProviderAdapter
from .github import GitHubAdapter
from .google import GoogleAdapter
from .spotify import SpotifyAdapter
from .tidal import TidalAdapter
from .transport import HttpTransport, RequestsTransport
from .youtube_music import YouTubeMusicAdapter

ADAPTER_CLASSES: Dict[Provider, Type[ProviderAdapter]] = {
    Provider.GOOGLE: GoogleAdapter,
    Provider.APPLE: AppleAdapter,
    Provider.GITHUB: GitHubAdapter,
    Provider.SPOTIFY: SpotifyAdapter,
    Provider.APPLE_MUSIC: AppleMusicAdapter,
    Provider.YOUTUBE_MUSIC: YouTubeMusicAdapter,
    Provider.TIDAL: TidalAdapter,
}

_missing = set(Provider) - set(ADAPTER_CLASSES)
if _missing:
    raise RuntimeError(f"No adapter registered for: {sorted(p.value for p in _missing)}")


def build_adapter(
    provider: Provider,
    config: ProviderClientConfig,
    transport: HttpTransport,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> ProviderAdapter:
    return ADAPTER_CLASSES[provider](config, transport, default_timeout=timeout)


class ProviderRegistry:
    """
    Holds one adapter per configured provider.

    Adapters are built lazily from the secret source on first use and then
    shared; adapters are safe to use from several threads.
    """

    def __init__(
        self,
        secret_source,
        transport: Optional[HttpTransport] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.secret_source = secret_source
        self.transport = transport or RequestsTransport()
        self.timeout = timeout
        self.logger = get_logger()
        self._adapters: Dict[Provider, ProviderAdapter] = {}
        self._lock = threading.Lock()

    def register(self, adapter: ProviderAdapter) -> None:
        """Install a pre-built adapter, replacing any existing one."""
        with self._lock:
            self._adapters[adapter.provider] = adapter

    def get(self, provider: Provider) -> ProviderAdapter:
        """
        Return the adapter for ``provider``.

        Raises:
            RepositoryError: If the provider has no client configuration (404)
        """
        provider = Provider(provider)
        with self._lock:
            adapter = self._adapters.get(provider)
            if adapter is None:
                config = self.secret_source.client_config(provider)
                if config is None:
                    raise not_found("ProviderAdapter", provider=provider.value)
                adapter = build_adapter(provider, config, self.transport, self.timeout)
                self._adapters[provider] = adapter
            return adapter

    def configured_providers(self) -> List[Provider]:
        return [p for p in Provider if p in self._adapters or self.secret_source.client_config(p)]

    def validate_all(self) -> Dict[Provider, Optional[str]]:
        """
        Validate every configured provider.

        Returns:
            Mapping of provider to None when valid, or the validation message
        """
        results: Dict[Provider, Optional[str]] = {}
        for provider in self.configured_providers():
            try:
                self.get(provider).validate_config()
                results[provider] = None
            except ValidationError as e:
                results[provider] = e.message
        invalid = [p.value for p, msg in results.items() if msg]
        if invalid:
            self.logger.warning(
                "Provider configuration problems found",
                extra={
                    "invalid_providers": ",".join(invalid),
                    "error_code": ErrorCode.CONFIGURATION_ERROR.value,
                },
            )
        return results
