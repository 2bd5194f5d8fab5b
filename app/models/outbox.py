import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Uuid

from app.core.db import Base, utcnow


class OutboxEvent(Base):
    """
    Side effects of a fulfilled registration (notifications, emails), written in the
    same transaction as the attendance change and dispatched after commit.
    """
    __tablename__ = "outbox_events"
    __table_args__ = (
        Index("ix_outbox_events_aggregate", "aggregate_type", "aggregate_id"),
        Index("ix_outbox_events_pending", "published", "attempts"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    aggregate_type = Column(String(64), nullable=False) # e.g., 'order'
    aggregate_id = Column(Uuid, nullable=True) # Order that produced the side effect
    event_type = Column(String(128), nullable=False) # e.g., 'email.receipt.v1'
    payload = Column(JSON, nullable=False) # Everything the dispatcher needs, pre-rendered
    published = Column(Boolean, nullable=False, default=False)
    attempts = Column(Integer, nullable=False, default=0)
    claimed_at = Column(DateTime(timezone=True), nullable=True) # Set while a dispatcher is delivering the row
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
