"""
Base service implementation with common functionality for all services.
"""

from datetime import datetime
from typing import Any, Callable, NoReturn, Optional

from ..config import AppConfig, get_config
from ..context.operation_context import OperationHandler
from ..db.db_base import utc_now
from ..exceptions import BaseError, ErrorCode, ServiceError
from ..utils.logger import get_logger


class BaseService:
    """Config, clock, logging and operation tracking shared by the vault services."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or get_config()
        self.clock = clock
        self.logger = get_logger()
        self.operations = OperationHandler(self.logger)

    def _handle_service_exception(
        self, operation: str, exception: Exception, **context: Any
    ) -> NoReturn:
        """
        Re-raise vault errors unchanged; wrap anything else in ServiceError.

        Raises:
            BaseError: The original error if it already belongs to the taxonomy
            ServiceError: For unexpected exceptions
        """
        if isinstance(exception, BaseError):
            raise exception

        self.logger.error(
            f"Unexpected error in {operation}",
            extra={"operation": operation, "error_type": type(exception).__name__, **context},
            exc_info=True,
        )
        raise ServiceError(
            f"Error in {operation}: {type(exception).__name__}",
            error_code=ErrorCode.INTERNAL_ERROR,
            operation=operation,
            cause=exception,
            **context,
        ) from exception
