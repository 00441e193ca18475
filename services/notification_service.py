"""
Notification Service
Role-targeted in-app notifications stored alongside the escrow state, plus
fire-and-forget fan-out to any registered listeners (e.g. a WebSocket hub).
"""

import logging
from typing import Callable, List, Optional

from config import Config
from models import NotificationTarget
from services.escrow_state import EscrowState, Notification
from utils.exception_handler import NotFound
from utils.helpers import generate_id, utc_now

logger = logging.getLogger(__name__)

Listener = Callable[[Notification], None]


class NotificationService:
    def __init__(self, state: EscrowState, limit: Optional[int] = None):
        self.state = state
        self.limit = limit or Config.NOTIFICATION_LIMIT
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def record(
        self,
        target: NotificationTarget,
        message: str,
        escrow_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Notification:
        """Prepend a notification and keep the newest `limit` entries"""
        notification = Notification(
            id=generate_id("notification"),
            target=target.value,
            message=message,
            created_at=utc_now(),
            escrow_id=escrow_id,
            status=status,
        )
        self.state.notifications.insert(0, notification)
        del self.state.notifications[self.limit:]
        logger.info(f"🔔 NOTIFICATION: -> {notification.target}: {message}")
        return notification

    def dispatch(self, notification: Notification) -> None:
        """Listener failures are logged and never reach the caller"""
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"❌ NOTIFICATION_DISPATCH_FAILED: {notification.id} via {listener!r}: {e}")

    def for_role(self, role: str, page_size: Optional[int] = None) -> List[Notification]:
        size = page_size or Config.NOTIFICATION_PAGE_SIZE
        visible = [
            item for item in self.state.notifications
            if item.target in (role, NotificationTarget.ALL.value)
        ]
        return visible[:size]

    def mark_read(self, notification_id: str, role: Optional[str] = None) -> Notification:
        """With a role, only notifications visible to that role can be marked"""
        for item in self.state.notifications:
            if item.id == notification_id:
                if role is not None and item.target not in (role, NotificationTarget.ALL.value):
                    break
                item.read = True
                return item
        raise NotFound(f"Notification {notification_id} not found")
