"""User-visible notification channel.

Every message the engine wants a user to see goes through a single
NotificationCenter. Hosts subscribe to render toasts; tests read ``history``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "level": self.level.value,
            "message": self.message,
            "createdAt": int(self.created_at * 1000),
        }


NotificationListener = Callable[[Notification], None]


class NotificationCenter:
    """Fan-out of notifications to subscribed listeners.

    Listener failures are logged and never reach the code that raised the
    notification.
    """

    def __init__(self, max_history: int = 100):
        self.max_history = max_history
        self.history: List[Notification] = []
        self._listeners: List[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> Notification:
        notification = Notification(message=message, level=level)
        self.history.append(notification)
        if len(self.history) > self.max_history:
            del self.history[: len(self.history) - self.max_history]

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")
        return notification

    def info(self, message: str) -> Notification:
        return self.notify(message, NotificationLevel.INFO)

    def success(self, message: str) -> Notification:
        return self.notify(message, NotificationLevel.SUCCESS)

    def warning(self, message: str) -> Notification:
        return self.notify(message, NotificationLevel.WARNING)

    def error(self, message: str) -> Notification:
        return self.notify(message, NotificationLevel.ERROR)

    def messages(self, level: Optional[NotificationLevel] = None) -> List[str]:
        return [n.message for n in self.history if level is None or n.level == level]

    def clear(self) -> None:
        self.history.clear()
