"""Service layer for business logic."""

from .base_service import BaseService
from .security_event_service import SecurityEventLogger
from .state_service import OAuthStateManager
from .token_lifecycle_service import TokenLifecycleService
from .user_directory import InMemoryUserDirectory, UserDirectory
from .vault_maintenance_service import VaultMaintenanceService

__all__ = [
    "BaseService",
    "InMemoryUserDirectory",
    "OAuthStateManager",
    "SecurityEventLogger",
    "TokenLifecycleService",
    "UserDirectory",
    "VaultMaintenanceService",
]
