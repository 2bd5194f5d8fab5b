from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid

from app.models.order import Order, OrderStatus


class OrderResponse(BaseModel):
    """Schema for an Order as exposed to clients and admins."""
    id: uuid.UUID
    user_id: uuid.UUID
    event_id: uuid.UUID
    amount: Decimal
    currency: str
    tickets: int
    special_requests: Optional[str] = None
    status: OrderStatus
    payment_method: Optional[str] = None
    gateway_session_id: Optional[str] = None
    confirmation_reference: str
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            user_id=order.user_id,
            event_id=order.event_id,
            amount=order.amount,
            currency=order.currency,
            tickets=order.tickets,
            special_requests=order.special_requests,
            status=order.status,
            payment_method=order.payment_method,
            gateway_session_id=order.gateway_session_id,
            confirmation_reference=order.confirmation_reference,
            created_at=order.created_at,
        )
