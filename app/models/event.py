import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy import Enum as SAEnum

from app.core.db import Base, utcnow


class EventStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    PUBLISHED = "PUBLISHED"  # The only bookable state
    REJECTED = "REJECTED"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(64), unique=True, nullable=False)
    email = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_status_created_at", "status", "created_at"),   # Published listing
        Index("ix_events_creator_id_status", "creator_id", "status"),   # Creator dashboards
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    creator_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    starts_at = Column(DateTime(timezone=True), nullable=False)
    location = Column(String(200), nullable=False, default="")
    category = Column(String(32), nullable=False, default="Other")
    price = Column(Numeric(10, 2), nullable=False, default=0) # 0 = free
    status = Column(
        SAEnum(EventStatus, native_enum=False, length=32),
        nullable=False,
        default=EventStatus.PENDING_APPROVAL,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_bookable(self) -> bool:
        return self.status == EventStatus.PUBLISHED

    @property
    def is_free(self) -> bool:
        return self.price == 0


class EventAttendee(Base):
    """
    The attendee set of an Event. Membership means the user holds a fulfilled
    registration. Derived from completed Orders, never the completion signal itself.
    """
    __tablename__ = "event_attendees"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_attendees_event_user"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
