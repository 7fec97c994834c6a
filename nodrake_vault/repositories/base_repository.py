"""
Base repository with session handling and database error mapping.

Repositories are built on a DatabaseManager. Every public operation takes an
optional ``session``: when given, the operation joins the caller's unit of
work and leaves commit/rollback to the caller; otherwise it runs in its own
short transaction.
"""

from contextlib import contextmanager
from typing import Any, Iterator, NoReturn, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.db_config import DatabaseManager
from ..exceptions import ErrorCode, RepositoryError, StoreConflictError
from ..utils.logger import get_logger


class BaseRepository:
    """Base repository with common functionality for all repositories."""

    entity_name = "record"

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_logger()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Open a session and commit it when the block exits cleanly.

        Pass the yielded session to repository calls to group them atomically.
        """
        session = self.db_manager.new_session()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _session_scope(self, session: Optional[Session]) -> Iterator[Session]:
        if session is not None:
            yield session
            return
        with self.transaction() as own_session:
            yield own_session

    def _handle_db_error(self, e: Exception, operation_name: str, **context: Any) -> NoReturn:
        """
        Map database errors onto the repository error taxonomy.

        Raises:
            StoreConflictError: On unique constraint violations
            RepositoryError: For any other database failure
        """
        if isinstance(e, RepositoryError):
            raise e

        error_context = {"operation_name": operation_name, "entity_type": self.entity_name, **context}

        if isinstance(e, IntegrityError):
            error_message = str(e.orig).lower() if getattr(e, "orig", None) else str(e).lower()
            if "unique" in error_message or "duplicate" in error_message:
                self.logger.warning(
                    f"Unique constraint race in {operation_name}", extra=error_context
                )
                raise StoreConflictError(
                    f"Concurrent write conflict on {self.entity_name}", cause=e, **error_context
                ) from e
            raise RepositoryError(
                f"Constraint violation on {self.entity_name}",
                error_code=ErrorCode.CONSTRAINT_VIOLATION,
                cause=e,
                **error_context,
            ) from e

        if isinstance(e, SQLAlchemyError):
            raise RepositoryError(
                f"Database error in {operation_name}",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                **error_context,
            ) from e

        raise e
