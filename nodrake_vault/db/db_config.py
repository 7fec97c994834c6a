"""
Engine and session setup for the vault database.

The vault only ever needs a connection URL: SQLite for development and
tests, Postgres in production. ``DATABASE_URL`` is read through the
application config.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..exceptions import ErrorCode, ServiceError, ValidationError
from ..utils.logger import get_logger

# Declarative base for the credential and flow state tables
Base: Any = declarative_base()

_SUPPORTED_BACKENDS = ("sqlite", "postgresql")


class DatabaseConfig(BaseModel):
    """Engine settings for one vault database."""

    url: str = Field(description="SQLAlchemy connection URL")
    pool_size: int = Field(default=5, gt=0)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, gt=0)
    echo: bool = False
    development_mode: bool = Field(
        default=False, description="Allow destructive operations such as dropping tables"
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "DatabaseConfig":
        return cls(url=url, **kwargs)

    @classmethod
    def from_settings(cls) -> "DatabaseConfig":
        """Engine settings from the application config (``DATABASE_URL`` and pool sizes)."""
        settings = get_config().database
        return cls(
            url=settings.connection_string,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            echo=settings.echo,
        )

    @property
    def backend(self) -> str:
        try:
            return make_url(self.url).get_backend_name()
        except ArgumentError as e:
            raise ValidationError(
                "Database URL could not be parsed",
                field="url",
                error_code=ErrorCode.INVALID_FORMAT,
                cause=e,
            )

    @property
    def is_sqlite(self) -> bool:
        return self.backend == "sqlite"

    @property
    def is_in_memory(self) -> bool:
        return self.is_sqlite and make_url(self.url).database in (None, "", ":memory:")

    def __repr__(self) -> str:
        masked = make_url(self.url).render_as_string(hide_password=True)
        return f"DatabaseConfig(url='{masked}', development_mode={self.development_mode})"


class DatabaseManager:
    """
    Owns the engine and session factory for one database.

    Repositories open a fresh session per unit of work with ``new_session``.
    """

    def __init__(self, config: DatabaseConfig):
        if config.backend not in _SUPPORTED_BACKENDS:
            raise ValidationError(
                f"Unsupported database backend: {config.backend}",
                field="url",
                error_code=ErrorCode.INVALID_FORMAT,
                backend=config.backend,
            )
        self.config = config
        self.engine = self._build_engine()
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _build_engine(self) -> Engine:
        if not self.config.is_sqlite:
            return create_engine(
                self.config.url,
                echo=self.config.echo,
                pool_size=self.config.pool_size,
                max_overflow=self.config.max_overflow,
                pool_timeout=self.config.pool_timeout,
                pool_pre_ping=True,
            )

        # Sessions are handed between threads by the refresh sweep
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if self.config.is_in_memory:
            # Every checkout must see the same in-memory database
            kwargs["poolclass"] = StaticPool
        return create_engine(self.config.url, echo=self.config.echo, **kwargs)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if not self.config.development_mode:
            raise ServiceError(
                "Refusing to drop vault tables outside development mode",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
            )
        Base.metadata.drop_all(self.engine)

    def new_session(self) -> Session:
        return self.session_factory()

    def close(self) -> None:
        self.engine.dispose()


def import_all_models():
    """Register every vault table with ``Base.metadata``."""
    from sqlalchemy.orm import configure_mappers

    from .db_credential_models import OAuthCredential  # noqa
    from .db_flow_state_models import OAuthFlowState  # noqa

    configure_mappers()


def init_db(db_manager: DatabaseManager) -> None:
    """Create any vault tables that do not exist yet."""
    get_logger().info("Initializing vault tables", extra={"backend": db_manager.config.backend})
    import_all_models()
    db_manager.create_tables()


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    The process-wide manager set up by ``initialize_db``.

    Raises:
        ServiceError: If ``initialize_db`` has not been called
    """
    if _db_manager is None:
        raise ServiceError(
            "Database manager not initialized. Call initialize_db() first.",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            operation="get_db_manager",
        )
    return _db_manager


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Create the process-wide manager and its tables.

    Args:
        config: Engine settings (default: ``DatabaseConfig.from_settings()``)
    """
    global _db_manager

    close_db()
    _db_manager = DatabaseManager(config or DatabaseConfig.from_settings())
    init_db(_db_manager)
    return _db_manager


def close_db() -> None:
    global _db_manager
    if _db_manager is not None:
        _db_manager.close()
        _db_manager = None
