from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
import uuid

from app.models.event import EventStatus
from app.schemas.order import OrderResponse


class RegistrationRequest(BaseModel):
    """Schema for the registration request body."""
    tickets: int = Field(1, ge=1, le=10, description="Number of tickets (1-10).")
    special_requests: Optional[str] = Field(None, max_length=500, description="Free-text requests for the organizer.")


class EventSnapshot(BaseModel):
    """The event as seen right after a fulfilled registration."""
    id: uuid.UUID
    title: str
    starts_at: datetime
    location: str
    category: str
    price: Decimal
    status: EventStatus
    attendees: int


class FreeRegistrationResponse(BaseModel):
    """Response for a free event: fulfilled immediately (201 Created)."""
    message: str
    order: OrderResponse
    event: EventSnapshot


class CheckoutResponse(BaseModel):
    """Response for a paid event: the client redirects to the hosted checkout."""
    message: str
    sessionId: str
    redirectUrl: str
    orderId: uuid.UUID


class RegisteredEvent(BaseModel):
    id: uuid.UUID
    title: str
    starts_at: datetime
    location: str
    category: str
    price: Decimal


class Pagination(BaseModel):
    currentPage: int
    totalPages: int
    totalEvents: int
    hasNext: bool


class RegisteredEventsResponse(BaseModel):
    events: List[RegisteredEvent]
    pagination: Pagination
