import logging
import math
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api.deps import get_current_user_id, get_db_session, get_dispatcher, get_gateway
from app.events.side_effects import SideEffectDispatcher
from app.schemas.order import OrderResponse
from app.schemas.registration import (
    CheckoutResponse,
    EventSnapshot,
    FreeRegistrationResponse,
    Pagination,
    RegisteredEvent,
    RegisteredEventsResponse,
    RegistrationRequest,
)
from app.schemas.response import SuccessResponse
from app.services.event_service import registered_events
from app.services.payment_gateway import CheckoutGateway
from app.services.registration_service import FreeRegistration, register_for_event

router = APIRouter()
log = logging.getLogger("registration")


@router.get("/registered", response_model=SuccessResponse)
async def list_registered_events(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Events the caller holds a fulfilled registration for, soonest first."""
    events, total = await registered_events(session, user_id, page=page, limit=limit)
    total_pages = math.ceil(total / limit) if total else 0
    data = RegisteredEventsResponse(
        events=[
            RegisteredEvent(
                id=e.id,
                title=e.title,
                starts_at=e.starts_at,
                location=e.location,
                category=e.category,
                price=e.price,
            )
            for e in events
        ],
        pagination=Pagination(
            currentPage=page,
            totalPages=total_pages,
            totalEvents=total,
            hasNext=page < total_pages,
        ),
    ).model_dump(mode="json")
    return SuccessResponse(data=data)


@router.post("/{event_id}/register", response_model=SuccessResponse)
async def register_endpoint(
    event_id: UUID,
    request_data: RegistrationRequest,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    gateway: CheckoutGateway = Depends(get_gateway),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
):
    """
    Registers the caller for an event. Free events are confirmed immediately (201);
    paid events return a checkout session to redirect to (200).
    """
    result = await register_for_event(
        user_id,
        event_id,
        tickets=request_data.tickets,
        special_requests=request_data.special_requests,
        gateway=gateway,
        dispatcher=dispatcher,
    )

    if isinstance(result, FreeRegistration):
        event = result.event
        response.status_code = status.HTTP_201_CREATED
        data = FreeRegistrationResponse(
            message="Registration successful",
            order=OrderResponse.from_order(result.order),
            event=EventSnapshot(
                id=event.id,
                title=event.title,
                starts_at=event.starts_at,
                location=event.location,
                category=event.category,
                price=event.price,
                status=event.status,
                attendees=result.attendee_count,
            ),
        ).model_dump(mode="json")
        return SuccessResponse(data=data)

    data = CheckoutResponse(
        message="Redirect to checkout",
        sessionId=result.session.session_id,
        redirectUrl=result.session.redirect_url,
        orderId=result.order.id,
    ).model_dump(mode="json")
    return SuccessResponse(data=data)
