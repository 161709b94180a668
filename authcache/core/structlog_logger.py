"""Structlog logger factory and service mixin."""

import logging
from typing import Any

import structlog


def get_struct_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger with the given name.

    Args:
        name: The logger name, usually __name__

    Returns:
        A bound structlog logger instance

    Note: For exception logging with debug stack traces, use this pattern:
        try:
            # some operation
        except Exception as e:
            exc_info = logger.isEnabledFor(logging.DEBUG)
            logger.error("operation_failed", error=str(e), exc_info=exc_info)
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class StructlogMixin:
    """Mixin adding a lazily bound structured logger to engine services.

    The bound context always carries ``service`` (the class name) and, when the
    service defines it, ``service_name``.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._logger: structlog.stdlib.BoundLogger | None = None

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        """Get or create a logger for this service with bound context."""
        if getattr(self, "_logger", None) is None:
            context = {"service": self.__class__.__name__}
            if hasattr(self, "service_name"):
                context["service_name"] = self.service_name
            self._logger = get_struct_logger(self.__class__.__module__).bind(
                **context
            )
        return self._logger  # type: ignore[return-value]

    def log_error_with_context(
        self,
        message: str,
        error: BaseException,
        **context: Any,
    ) -> None:
        """Log an error with structured context.

        Stack traces are only attached when the logger is at DEBUG level.
        """
        exc_info = logging.getLogger(self.__class__.__module__).isEnabledFor(
            logging.DEBUG
        )
        self.logger.error(
            message,
            error=str(error),
            error_type=error.__class__.__name__,
            exc_info=exc_info,
            **context,
        )
