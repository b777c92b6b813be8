"""
Notification service.

Sends in-app notifications to one user, many users or everyone with a role,
and the standard subscription lifecycle messages.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import select

from backend.core.clock import resolve_now
from backend.core.config import settings
from backend.core.database import get_db_session, users as app_users
from backend.features.notifications.store import InMemoryNotificationStore, NotificationStore
from backend.models.notification import Notification, NotificationType

logger = logging.getLogger("subtrack")

DEFAULT_LIST_LIMIT = 20

SUBSCRIPTION_EVENTS = {
    "created": ("Your subscription to {plan_name} has been activated!", NotificationType.SUCCESS),
    "upgraded": ("Your subscription has been upgraded to {plan_name}!", NotificationType.SUCCESS),
    "downgraded": ("Your subscription has been changed to {plan_name}.", NotificationType.INFO),
    "cancelled": ("Your subscription to {plan_name} has been cancelled.", NotificationType.WARNING),
    "renewed": ("Your subscription to {plan_name} has been renewed.", NotificationType.SUCCESS),
    "expiring": ("Your subscription to {plan_name} expires soon.", NotificationType.WARNING),
}


class NotificationService:
    def __init__(self, store: NotificationStore):
        self.store = store

    def send(
        self,
        user_id: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Notification:
        notification = Notification(
            notification_id=uuid4().hex,
            user_id=user_id,
            message=message,
            type=NotificationType(type),
            data=data or {},
            timestamp=resolve_now(now),
        )
        self.store.append(notification)
        logger.info("notification.sent", extra={"user_id": user_id, "event_type": notification.type.value})
        return notification

    def send_bulk(
        self,
        user_ids: Iterable[str],
        message: str,
        type: NotificationType = NotificationType.INFO,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> List[Notification]:
        return [self.send(uid, message, type, data, now) for uid in user_ids]

    def send_to_role(
        self,
        role: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> List[Notification]:
        with get_db_session() as session:
            user_ids = session.execute(
                select(app_users.c.user_id).where(app_users.c.role == role, app_users.c.is_active.is_(True))
            ).scalars().all()
        return self.send_bulk(user_ids, message, type, data, now)

    def subscription_event(
        self,
        user_id: str,
        event: str,
        plan_name: str,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Notification]:
        template = SUBSCRIPTION_EVENTS.get(event)
        if template is None:
            logger.warning(f"Unknown subscription notification event: {event}")
            return None
        message, type_ = template
        payload = {"event": event, "plan_name": plan_name}
        payload.update(data or {})
        return self.send(user_id, message.format(plan_name=plan_name), type_, payload, now)

    def list(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT, unread_only: bool = False) -> List[Notification]:
        """Newest first."""
        items = list(reversed(self.store.list(user_id)))
        if unread_only:
            items = [n for n in items if not n.read]
        return items[: max(0, limit)]

    def mark_read(self, user_id: str, notification_id: str, now: Optional[datetime] = None) -> bool:
        items = self.store.list(user_id)
        found = False
        updated = []
        for n in items:
            if n.notification_id == notification_id and not n.read:
                n = n.model_copy(update={"read": True, "read_at": resolve_now(now)})
                found = True
            elif n.notification_id == notification_id:
                found = True
            updated.append(n)
        if found:
            self.store.replace(user_id, updated)
        return found

    def mark_all_read(self, user_id: str, now: Optional[datetime] = None) -> int:
        items = self.store.list(user_id)
        ts = resolve_now(now)
        changed = 0
        updated = []
        for n in items:
            if not n.read:
                n = n.model_copy(update={"read": True, "read_at": ts})
                changed += 1
            updated.append(n)
        if changed:
            self.store.replace(user_id, updated)
        return changed

    def unread_count(self, user_id: str) -> int:
        return sum(1 for n in self.store.list(user_id) if not n.read)


_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Process-wide service backed by the in-memory store."""
    global _service
    if _service is None:
        _service = NotificationService(InMemoryNotificationStore(settings.NOTIFICATIONS_PER_USER))
    return _service
