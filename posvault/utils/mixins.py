import structlog

from posvault.utils.logger import get_logger


class LoggerMixin:
    """Gives components a ``logger`` named after their class"""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        cls = type(self)
        return get_logger(f"{cls.__module__}.{cls.__qualname__}")
