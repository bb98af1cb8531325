"""Transient user-visible notifications."""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

Level = Literal["success", "error", "info"]


class Notice(BaseModel):
    """A toast-style message."""

    level: Level
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Collects notices for whichever surface shows them.

    Publishing never blocks and never fails; nothing acknowledges a notice.
    """

    def __init__(self, max_pending: int = 50) -> None:
        self._pending: deque[Notice] = deque(maxlen=max_pending)
        self._listeners: list[Callable[[Notice], None]] = []

    def subscribe(self, listener: Callable[[Notice], None]) -> None:
        self._listeners.append(listener)

    def notify(self, level: Level, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        if level == "error":
            logger.warning(f"Notice: {message}")
        else:
            logger.info(f"Notice: {message}")
        self._pending.append(notice)
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception as e:
                logger.error(f"Notice listener failed: {e}")
        return notice

    def success(self, message: str) -> Notice:
        return self.notify("success", message)

    def error(self, message: str) -> Notice:
        return self.notify("error", message)

    def info(self, message: str) -> Notice:
        return self.notify("info", message)

    def pending(self) -> list[Notice]:
        return list(self._pending)

    def drain(self) -> list[Notice]:
        """Return and forget the notices not shown yet."""
        notices = list(self._pending)
        self._pending.clear()
        return notices
