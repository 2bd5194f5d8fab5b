"""
Fulfillment Service: the single point where a completed Order grants attendance
and produces its notifications and email.

``fulfill_registration`` runs inside the caller's transaction and only records
side effects in the outbox. The caller hands the returned rows to
``SideEffectDispatcher.deliver_all`` once the transaction has committed.
"""
import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import utcnow
from app.core.errors import InvalidTransition
from app.events.outbox_utility import create_outbox_event, has_outbox_events
from app.events.side_effects import EMAIL_CONFIRMATION, EMAIL_RECEIPT, NOTIFY_CREATOR, NOTIFY_REGISTRANT
from app.models.event import Event, User
from app.models.notification import NotificationType
from app.models.order import Order, OrderStatus
from app.models.outbox import OutboxEvent
from app.services.email_service import render_confirmation_email, render_receipt_email
from app.services.event_service import add_attendee

log = logging.getLogger("fulfillment")

AGGREGATE = "order"

def _plural(tickets: int) -> str:
    return f"{tickets} ticket{'s' if tickets > 1 else ''}"

async def fulfill_registration(session: AsyncSession, event: Event, user: User, order: Order) -> List[OutboxEvent]:
    """
    Grants attendance and records the side effects for a completed Order.

    Safe to call more than once per Order: once side effects exist for the Order,
    later calls return an empty list and change nothing.
    """
    if order.status != OrderStatus.COMPLETED:
        raise InvalidTransition(f"Order {order.id} is {order.status.value}, not completed")

    if await has_outbox_events(session, AGGREGATE, order.id):
        log.info(f"Order {order.id} already fulfilled, skipping.")
        return []

    added = await add_attendee(session, event.id, user.id)
    if not added:
        log.info(f"User {user.id} already attending event {event.id} (Order {order.id}).")

    effects = []
    reference = order.confirmation_reference

    # 1. Registrant notification
    effects.append(await create_outbox_event(
        session,
        aggregate_type=AGGREGATE,
        aggregate_id=order.id,
        event_type=NOTIFY_REGISTRANT,
        payload={
            "user_id": str(user.id),
            "event_id": str(event.id),
            "type": NotificationType.EVENT_REGISTRATION.value,
            "message": f'You are registered for "{event.title}" ({_plural(order.tickets)}). Confirmation #{reference}',
            "channel_event": "event_registered",
            "data": {
                "eventId": str(event.id),
                "title": event.title,
                "date": event.starts_at.isoformat(),
            },
        },
    ))

    # 2. Creator notification, unless the creator registered for their own event
    if event.creator_id != user.id:
        effects.append(await create_outbox_event(
            session,
            aggregate_type=AGGREGATE,
            aggregate_id=order.id,
            event_type=NOTIFY_CREATOR,
            payload={
                "user_id": str(event.creator_id),
                "event_id": str(event.id),
                "type": NotificationType.NEW_EVENT_REGISTRATION.value,
                "message": f'New registration for "{event.title}" by {user.username} ({_plural(order.tickets)}).',
                "channel_event": "new_event_registration",
                "data": {
                    "registrant": user.username,
                    "eventId": str(event.id),
                    "title": event.title,
                    "tickets": order.tickets,
                    "timestamp": utcnow().isoformat(),
                },
            },
        ))

    # 3. Email: receipt for paid orders, confirmation for free ones
    if order.is_paid:
        email_type = EMAIL_RECEIPT
        subject, html = render_receipt_email(user, event, order)
    else:
        email_type = EMAIL_CONFIRMATION
        subject, html = render_confirmation_email(user, event, order)
    effects.append(await create_outbox_event(
        session,
        aggregate_type=AGGREGATE,
        aggregate_id=order.id,
        event_type=email_type,
        payload={"to": user.email, "subject": subject, "html": html},
    ))

    log.info(f"Order {order.id} fulfilled: {len(effects)} side effects recorded.")
    return effects
