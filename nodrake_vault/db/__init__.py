"""
SQLAlchemy models and database setup for the token vault.
"""

from .db_base import TimestampMixin, UUIDMixin, ensure_utc, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    import_all_models,
    init_db,
    initialize_db,
)
from .db_credential_models import OAuthCredential
from .db_flow_state_models import OAuthFlowState

__all__ = [
    # Base definitions
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "ensure_utc",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "import_all_models",
    "init_db",
    "initialize_db",
    # Models
    "OAuthCredential",
    "OAuthFlowState",
]
