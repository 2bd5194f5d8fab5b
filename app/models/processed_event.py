import uuid

from sqlalchemy import Column, DateTime, String, Uuid

from app.core.db import Base, utcnow


class ProcessedEvent(Base):
    """
    Gateway webhook events already handled. Redelivery of the same gateway event id
    is acknowledged without touching any Order.
    """
    __tablename__ = "processed_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(String(128), unique=True, nullable=False) # e.g., 'evt_1ABC...'
    event_type = Column(String(128), nullable=False)
    outcome = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
