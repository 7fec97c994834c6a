"""
Shared fixtures for the token vault tests.

Each test gets its own SQLite file database, a fresh single-key key set, a
frozen clock and a registry holding scripted Spotify and Google adapters.
"""

import pytest

from nodrake_vault.config import AppConfig, RetryConfig, VaultConfig, reset_config, set_config
from nodrake_vault.db import DatabaseConfig, DatabaseManager, init_db
from nodrake_vault.enums import Provider
from nodrake_vault.exceptions import clear_correlation_id
from nodrake_vault.providers.registry import ProviderRegistry
from nodrake_vault.repositories import (
    CredentialRepository,
    FlowStateRepository,
    InMemoryFlowStateStore,
)
from nodrake_vault.secret_source import StaticSecretSource
from nodrake_vault.services import (
    InMemoryUserDirectory,
    OAuthStateManager,
    SecurityEventLogger,
    TokenLifecycleService,
    VaultMaintenanceService,
)
from nodrake_vault.utils.encryption_utils import EncryptionKeySet, SecretCipher
from nodrake_vault.utils.logger import reset_logging
from tests.fixtures.stubs import FakeTransport, FrozenClock, StubAdapter


@pytest.fixture
def app_config() -> AppConfig:
    """Settings with instant retries so failure paths do not sleep."""
    return AppConfig(
        vault=VaultConfig(
            refresh_margin_seconds=300,
            state_ttl_seconds=600,
            provider_timeout_seconds=5.0,
        ),
        retry=RetryConfig(max_attempts=3, backoff_base_seconds=0.0, backoff_max_seconds=0.0),
    )


@pytest.fixture(autouse=True)
def vault_config(app_config: AppConfig):
    set_config(app_config)
    yield app_config
    reset_config()
    reset_logging()
    clear_correlation_id()


# ==================== DATABASE ====================


@pytest.fixture
def db_manager(tmp_path) -> DatabaseManager:
    """File-backed SQLite so every thread and session sees the same data."""
    manager = DatabaseManager(
        DatabaseConfig.from_url(f"sqlite:///{tmp_path / 'vault.db'}", development_mode=True)
    )
    init_db(manager)
    yield manager
    manager.close()


@pytest.fixture
def credential_repository(db_manager) -> CredentialRepository:
    return CredentialRepository(db_manager)


@pytest.fixture
def flow_state_repository(db_manager) -> FlowStateRepository:
    return FlowStateRepository(db_manager)


# ==================== SECRETS ====================


@pytest.fixture
def key_set() -> EncryptionKeySet:
    return EncryptionKeySet({1: EncryptionKeySet.generate_key()})


@pytest.fixture
def cipher(key_set) -> SecretCipher:
    return SecretCipher(key_set)


# ==================== SERVICES ====================


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def security_events(app_config) -> SecurityEventLogger:
    return SecurityEventLogger(app_config.security)


@pytest.fixture
def flow_state_store() -> InMemoryFlowStateStore:
    return InMemoryFlowStateStore()


@pytest.fixture
def state_manager(flow_state_store, app_config, security_events, clock) -> OAuthStateManager:
    return OAuthStateManager(
        flow_state_store, config=app_config.vault, security_events=security_events, clock=clock
    )


@pytest.fixture
def user_directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory()


@pytest.fixture
def spotify() -> StubAdapter:
    return StubAdapter(Provider.SPOTIFY)


@pytest.fixture
def google() -> StubAdapter:
    return StubAdapter(Provider.GOOGLE)


@pytest.fixture
def registry(key_set, spotify, google) -> ProviderRegistry:
    registry = ProviderRegistry(StaticSecretSource(key_set), transport=FakeTransport())
    registry.register(spotify)
    registry.register(google)
    return registry


@pytest.fixture
def lifecycle(
    credential_repository,
    cipher,
    registry,
    state_manager,
    user_directory,
    app_config,
    security_events,
    clock,
) -> TokenLifecycleService:
    return TokenLifecycleService(
        credentials=credential_repository,
        cipher=cipher,
        registry=registry,
        state_manager=state_manager,
        user_directory=user_directory,
        config=app_config,
        security_events=security_events,
        clock=clock,
    )


@pytest.fixture
def maintenance(lifecycle) -> VaultMaintenanceService:
    return VaultMaintenanceService(lifecycle)
