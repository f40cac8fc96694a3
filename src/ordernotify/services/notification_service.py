"""Notification service — the order events that get pushed in real time.

Learn: The order handlers call this after their database transaction
commits. Addressing follows who needs to act:

    order created         → every connected admin (role "admin")
    order status changed  → the customer who placed the order (user id)

Publishing is best-effort. If nobody matching is connected, the push is
simply not delivered; the notification row is already persisted.
"""

import uuid

import structlog

from ordernotify.events.types import ORDER_CREATED, ORDER_STATUS_CHANGED
from ordernotify.realtime.broker import Broker
from ordernotify.schemas.notification import NotificationEvent

logger = structlog.get_logger()

ORDER_CREATED_MESSAGE = "📦 Order created"


def build_order_created(user_id: uuid.UUID, order_id: uuid.UUID) -> NotificationEvent:
    return NotificationEvent(
        type=ORDER_CREATED,
        user_id=user_id,
        order_id=order_id,
        message=ORDER_CREATED_MESSAGE,
    )


def build_status_changed(
    user_id: uuid.UUID, order_id: uuid.UUID, status: str
) -> NotificationEvent:
    return NotificationEvent(
        type=ORDER_STATUS_CHANGED,
        user_id=user_id,
        order_id=order_id,
        message=f"📢 {status}",
    )


class NotificationService:
    """Publishes order notifications through the broker."""

    def __init__(self, broker: Broker, admin_role: str = "admin"):
        self.broker = broker
        self.admin_role = admin_role

    def order_created(self, notification: NotificationEvent) -> int:
        """Push a new-order notification to every connected admin."""
        delivered = self.broker.publish_to_role(
            self.admin_role, notification.model_dump_json()
        )
        logger.info(
            "notification.order_created",
            order_id=str(notification.order_id),
            delivered=delivered,
        )
        return delivered

    def order_status_changed(self, notification: NotificationEvent) -> int:
        """Push a status change to the customer who owns the order."""
        delivered = self.broker.publish_to_user(
            str(notification.user_id), notification.model_dump_json()
        )
        logger.info(
            "notification.order_status_changed",
            order_id=str(notification.order_id),
            user_id=str(notification.user_id),
            delivered=delivered,
        )
        return delivered
