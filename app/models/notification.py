import uuid
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy import Enum as SAEnum

from app.core.db import Base, utcnow


class NotificationType(str, Enum):
    EVENT_REGISTRATION = "event_registration"          # To the registrant
    NEW_EVENT_REGISTRATION = "new_event_registration"  # To the event creator


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_id_is_read", "user_id", "is_read"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=True)
    message = Column(String(500), nullable=False)
    type = Column(
        SAEnum(NotificationType, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
