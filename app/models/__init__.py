# app/models/__init__.py
from .event import Event, EventAttendee, EventStatus, User
from .notification import Notification, NotificationType
from .order import ORDER_TRANSITIONS, Order, OrderStatus
from .outbox import OutboxEvent
from .processed_event import ProcessedEvent

# Export all models
__all__ = [
    "Event",
    "EventAttendee",
    "EventStatus",
    "Notification",
    "NotificationType",
    "ORDER_TRANSITIONS",
    "Order",
    "OrderStatus",
    "OutboxEvent",
    "ProcessedEvent",
    "User",
]
