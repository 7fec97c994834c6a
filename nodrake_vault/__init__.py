"""
No Drake in the House token vault.

OAuth token lifecycle and encrypted credential storage for identity and music
streaming providers.
"""

from .enums import FlowOutcome, FlowPurposeKind, Provider
from .schemas.flow_schemas import FlowPurpose, FlowResult
from .services.token_lifecycle_service import TokenLifecycleService
from .vault import create_maintenance_service, create_token_vault

__version__ = "0.1.0"

__all__ = [
    "FlowOutcome",
    "FlowPurpose",
    "FlowPurposeKind",
    "FlowResult",
    "Provider",
    "TokenLifecycleService",
    "create_maintenance_service",
    "create_token_vault",
]
