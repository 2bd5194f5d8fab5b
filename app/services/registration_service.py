"""
Registration Orchestrator.

Free events are fulfilled synchronously. Paid events get a pending Order and a
hosted checkout session; fulfillment then waits for the gateway webhook.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from app.core.db import get_sessionmaker
from app.core.errors import AlreadyPaid, AlreadyRegistered, NotBookable, NotFound, RegistrationValidationError
from app.events.side_effects import SideEffectDispatcher
from app.models.event import Event
from app.models.order import Order, OrderStatus
from app.services import order_ledger
from app.services.event_service import attendee_count, get_user, is_attendee, lock_event
from app.services.fulfillment_service import fulfill_registration
from app.services.payment_gateway import CheckoutGateway, CheckoutSession, open_checkout_session

log = logging.getLogger("registration")

MIN_TICKETS = 1
MAX_TICKETS = 10
MAX_SPECIAL_REQUESTS = 500
FREE_PAYMENT_METHOD = "Free registration"


@dataclass
class FreeRegistration:
    order: Order
    event: Event
    attendee_count: int


@dataclass
class PaidRegistration:
    order: Order
    session: CheckoutSession


def validate_request(tickets: int, special_requests: Optional[str]) -> None:
    if isinstance(tickets, bool) or not isinstance(tickets, int) or not MIN_TICKETS <= tickets <= MAX_TICKETS:
        raise RegistrationValidationError(f"Tickets must be between {MIN_TICKETS} and {MAX_TICKETS}.")
    if special_requests is not None and len(special_requests) > MAX_SPECIAL_REQUESTS:
        raise RegistrationValidationError(
            f"Special requests must be at most {MAX_SPECIAL_REQUESTS} characters."
        )


async def register_for_event(
    user_id: UUID,
    event_id: UUID,
    tickets: int = 1,
    special_requests: Optional[str] = None,
    *,
    gateway: CheckoutGateway,
    dispatcher: SideEffectDispatcher,
):
    """
    Registers ``user_id`` for ``event_id``. Returns FreeRegistration or PaidRegistration.

    Every call creates exactly one Order; a retried call repeats the duplicate checks
    first and never reuses an earlier Order.
    """
    validate_request(tickets, special_requests)

    async with get_sessionmaker()() as session:
        async with session.begin():
            user = await get_user(session, user_id)
            if not user:
                raise NotFound("User not found")

            # Row lock: concurrent registrations for the same event queue up here
            event = await lock_event(session, event_id)
            if not event or not event.is_bookable:
                raise NotBookable("Event not found or not published")

            if await is_attendee(session, event.id, user.id):
                raise AlreadyRegistered("Already registered for this event")

            # Independent of the attendee set, which is written at a different point
            if await order_ledger.has_completed_order(session, user.id, event.id):
                raise AlreadyPaid("A completed order already exists for this event")

            amount = order_ledger.compute_amount(event.price, tickets)

            if event.is_free:
                order = await order_ledger.create_order(
                    session,
                    event_id=event.id,
                    user_id=user.id,
                    amount=amount,
                    tickets=tickets,
                    special_requests=special_requests,
                    status=OrderStatus.COMPLETED,
                    payment_method=FREE_PAYMENT_METHOD,
                    gateway_session_id=f"free_{uuid.uuid4().hex}",
                )
                effects = await fulfill_registration(session, event, user, order)
            else:
                order = await order_ledger.create_order(
                    session,
                    event_id=event.id,
                    user_id=user.id,
                    amount=amount,
                    tickets=tickets,
                    special_requests=special_requests,
                    status=OrderStatus.PENDING,
                )

    if event.is_free:
        # Committed: side effects are best-effort from here on
        await dispatcher.deliver_all(effects)
        log.info(f"Free registration for user {user.id} on event {event.id} completed (Order {order.id}).")
        async with get_sessionmaker()() as session:
            count = await attendee_count(session, event.id)
        return FreeRegistration(order=order, event=event, attendee_count=count)

    checkout = await open_checkout_session(gateway, order, event, user)
    log.info(f"Paid registration for user {user.id} on event {event.id} awaiting payment (Order {order.id}).")
    return PaidRegistration(order=order, session=checkout)
