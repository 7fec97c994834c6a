"""
Wiring for a complete token vault.

``create_token_vault`` assembles the orchestrator from a database manager, a
secret source and a user directory, defaulting each to the environment-driven
production choice.
"""

from typing import Optional

from .config import AppConfig, get_config
from .db.db_config import DatabaseManager, get_db_manager
from .providers.registry import ProviderRegistry
from .providers.transport import HttpTransport
from .repositories.credential_repository import CredentialRepository
from .repositories.flow_state_repository import FlowStateRepository, FlowStateStore
from .secret_source import EnvironmentSecretSource, SecretSource
from .services.security_event_service import SecurityEventLogger
from .services.state_service import OAuthStateManager
from .services.token_lifecycle_service import TokenLifecycleService
from .services.user_directory import UserDirectory
from .services.vault_maintenance_service import VaultMaintenanceService
from .utils.encryption_utils import SecretCipher
from .utils.logger import get_logger


def create_token_vault(
    user_directory: UserDirectory,
    db_manager: Optional[DatabaseManager] = None,
    secret_source: Optional[SecretSource] = None,
    transport: Optional[HttpTransport] = None,
    flow_state_store: Optional[FlowStateStore] = None,
    config: Optional[AppConfig] = None,
) -> TokenLifecycleService:
    """
    Build a TokenLifecycleService.

    Args:
        user_directory: The application's user accounts
        db_manager: Database to use (default: the one set up by ``initialize_db``)
        secret_source: Keys and client registrations (default: environment)
        transport: HTTP transport for provider calls (default: requests)
        flow_state_store: Where pending flows live (default: the SQL table)
        config: Settings (default: ``get_config()``)
    """
    config = config or get_config()
    db_manager = db_manager or get_db_manager()
    secret_source = secret_source or EnvironmentSecretSource()

    key_set = secret_source.load_key_set()
    security_events = SecurityEventLogger(config.security)
    registry = ProviderRegistry(
        secret_source, transport=transport, timeout=config.vault.provider_timeout_seconds
    )
    state_manager = OAuthStateManager(
        flow_state_store or FlowStateRepository(db_manager),
        config=config.vault,
        security_events=security_events,
    )

    get_logger().info(
        "Token vault assembled",
        extra={
            "key_version": key_set.current_version,
            "configured_providers": ",".join(p.value for p in registry.configured_providers()),
        },
    )
    return TokenLifecycleService(
        credentials=CredentialRepository(db_manager),
        cipher=SecretCipher(key_set),
        registry=registry,
        state_manager=state_manager,
        user_directory=user_directory,
        config=config,
        security_events=security_events,
    )


def create_maintenance_service(lifecycle: TokenLifecycleService) -> VaultMaintenanceService:
    return VaultMaintenanceService(lifecycle)
