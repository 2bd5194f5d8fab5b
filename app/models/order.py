import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Uuid
from sqlalchemy import Enum as SAEnum

from app.core.db import Base, utcnow


class OrderStatus(str, Enum):
    PENDING = "pending"      # Paid path, waiting for the gateway callback
    COMPLETED = "completed"  # Fulfilled (terminal)
    FAILED = "failed"        # Checkout expired or abandoned (terminal)
    REFUNDED = "refunded"    # Terminal, never entered by this service


# The single legal-transition table. Anything not listed is rejected by the ledger.
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.COMPLETED, OrderStatus.FAILED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.FAILED: set(),
    OrderStatus.REFUNDED: set(),
}


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_event_id_status", "event_id", "status"),        # Admin reports per event
        Index("ix_orders_user_id_status", "user_id", "event_id", "status"), # Duplicate payment check
        Index("ix_orders_status_created_at", "status", "created_at"),    # Abandoned checkout sweep
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False) # price * tickets, fixed at creation
    currency = Column(String(8), nullable=False, default="usd")
    tickets = Column(Integer, nullable=False, default=1)
    special_requests = Column(String(500), nullable=True)
    gateway_session_id = Column(String(255), unique=True, nullable=True)
    payment_method = Column(String(128), nullable=True)
    status = Column(
        SAEnum(OrderStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_paid(self) -> bool:
        return self.amount > 0

    @property
    def confirmation_reference(self) -> str:
        """Human-readable reference shown to the registrant."""
        return f"CC-{self.id.hex[-8:].upper()}"
