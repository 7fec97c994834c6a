import pytest

from nodrake_vault.enums import Provider
from nodrake_vault.exceptions import ErrorCode, RepositoryError
from nodrake_vault.providers.registry import ADAPTER_CLASSES, ProviderRegistry, build_adapter
from nodrake_vault.providers.spotify import SpotifyAdapter
from nodrake_vault.schemas.provider_schemas import ProviderClientConfig
from nodrake_vault.secret_source import StaticSecretSource
from tests.fixtures.stubs import StubAdapter

SPOTIFY_CONFIG = ProviderClientConfig(client_id="spotify-client", client_secret="s")


@pytest.fixture
def source(key_set):
    return StaticSecretSource(key_set, {Provider.SPOTIFY: SPOTIFY_CONFIG})


def test_every_provider_has_an_adapter():
    assert set(ADAPTER_CLASSES) == set(Provider)
    for provider, adapter_class in ADAPTER_CLASSES.items():
        assert adapter_class.provider == provider


def test_build_adapter_passes_timeout(transport):
    adapter = build_adapter(Provider.SPOTIFY, SPOTIFY_CONFIG, transport, timeout=2.5)
    assert isinstance(adapter, SpotifyAdapter)
    assert adapter.default_timeout == 2.5


def test_adapters_are_built_once(source, transport):
    registry = ProviderRegistry(source, transport=transport, timeout=4.0)

    adapter = registry.get(Provider.SPOTIFY)

    assert isinstance(adapter, SpotifyAdapter)
    assert adapter.transport is transport
    assert registry.get("spotify") is adapter


def test_unconfigured_provider_is_not_found(source, transport):
    registry = ProviderRegistry(source, transport=transport)

    with pytest.raises(RepositoryError) as exc_info:
        registry.get(Provider.TIDAL)

    assert exc_info.value.status_code == 404
    assert exc_info.value.error_code == ErrorCode.NOT_FOUND


def test_register_replaces_configured_adapter(source, transport):
    registry = ProviderRegistry(source, transport=transport)
    stub = StubAdapter(Provider.SPOTIFY)

    registry.register(stub)

    assert registry.get(Provider.SPOTIFY) is stub


def test_configured_providers(source, transport):
    registry = ProviderRegistry(source, transport=transport)
    registry.register(StubAdapter(Provider.GITHUB))

    assert registry.configured_providers() == [Provider.GITHUB, Provider.SPOTIFY]


def test_validate_all_reports_problems(key_set, transport):
    source = StaticSecretSource(
        key_set,
        {
            Provider.SPOTIFY: SPOTIFY_CONFIG,
            Provider.APPLE: ProviderClientConfig(client_id="com.nodrake", team_id="TEAM"),
        },
    )
    registry = ProviderRegistry(source, transport=transport)

    results = registry.validate_all()

    assert results[Provider.SPOTIFY] is None
    assert "key_id" in results[Provider.APPLE]
    assert Provider.GOOGLE not in results
