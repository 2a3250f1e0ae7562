"""
Operator notifications for backup and restore outcomes
"""

from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from posvault.utils.logger import sanitize_log_content
from posvault.utils.mixins import LoggerMixin


class NotificationLevel(str, Enum):
    """Notification severity"""

    SUCCESS = "success"
    ERROR = "error"


class Notifier(Protocol):
    """Receives success and failure messages from the backup subsystem"""

    async def success(self, message: str, **context: Any) -> None: ...

    async def failure(self, message: str, **context: Any) -> None: ...


class LogNotifier(LoggerMixin):
    """Notifier that writes to the structured log and keeps a short history."""

    def __init__(self, max_history: int = 100) -> None:
        self.notification_history: list[dict[str, Any]] = []
        self.max_history = max_history

    async def success(self, message: str, **context: Any) -> None:
        self.logger.info(message, notification=NotificationLevel.SUCCESS.value, **context)
        self._record(NotificationLevel.SUCCESS, message, context)

    async def failure(self, message: str, **context: Any) -> None:
        self.logger.error(message, notification=NotificationLevel.ERROR.value, **context)
        self._record(NotificationLevel.ERROR, message, context)

    def _record(
        self, level: NotificationLevel, message: str, context: dict[str, Any]
    ) -> None:
        self.notification_history.append(
            {
                "timestamp": datetime.now().astimezone().isoformat(),
                "level": level.value,
                "message": sanitize_log_content(message),
                "context": context,
            }
        )
        if len(self.notification_history) > self.max_history:
            self.notification_history = self.notification_history[-self.max_history :]
