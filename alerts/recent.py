"""Per-user ring buffer of recent notifications for low-latency polling.

The buffer is a read cache in front of the ``notifications`` table, not a
source of truth: it is lost on restart while the durable rows survive.
"""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, Dict, List

from core.models import Notification

DEFAULT_LIMIT = 10


class RecentNotifications:
    """Keeps the last ``limit`` notifications of every user, dropping the oldest."""

    def __init__(self, limit: int = DEFAULT_LIMIT) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self._buffers: Dict[str, Deque[Notification]] = {}
        self._lock = Lock()

    def push(self, notification: Notification) -> None:
        with self._lock:
            buffer = self._buffers.get(notification.user_id)
            if buffer is None:
                buffer = deque(maxlen=self.limit)
                self._buffers[notification.user_id] = buffer
            buffer.append(notification)

    def for_user(self, user_id: str) -> List[Notification]:
        """Newest first."""

        with self._lock:
            return list(reversed(self._buffers.get(user_id, ())))

    def clear(self, user_id: str | None = None) -> None:
        with self._lock:
            if user_id is None:
                self._buffers.clear()
            else:
                self._buffers.pop(user_id, None)


__all__ = ["RecentNotifications", "DEFAULT_LIMIT"]
