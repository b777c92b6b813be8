"""
Notification storage.

Notifications live for the lifetime of the process only. The store is an
injectable interface so a shared cache can replace the in-memory map.
"""

import threading
from collections import deque
from typing import Deque, Dict, List, Optional, Protocol

from backend.models.notification import Notification


class NotificationStore(Protocol):
    def append(self, notification: Notification) -> None: ...

    def list(self, user_id: str) -> List[Notification]: ...

    def replace(self, user_id: str, notifications: List[Notification]) -> None: ...

    def clear(self, user_id: Optional[str] = None) -> None: ...


class InMemoryNotificationStore:
    """Per-user bounded queues; the oldest entry is evicted once a user hits the cap."""

    def __init__(self, max_per_user: int = 100):
        self.max_per_user = max_per_user
        self._items: Dict[str, Deque[Notification]] = {}
        self._lock = threading.Lock()

    def append(self, notification: Notification) -> None:
        with self._lock:
            queue = self._items.setdefault(notification.user_id, deque(maxlen=self.max_per_user))
            queue.append(notification)

    def list(self, user_id: str) -> List[Notification]:
        """Oldest first."""
        with self._lock:
            return list(self._items.get(user_id, ()))

    def replace(self, user_id: str, notifications: List[Notification]) -> None:
        with self._lock:
            self._items[user_id] = deque(notifications[-self.max_per_user:], maxlen=self.max_per_user)

    def clear(self, user_id: Optional[str] = None) -> None:
        with self._lock:
            if user_id is None:
                self._items.clear()
            else:
                self._items.pop(user_id, None)
