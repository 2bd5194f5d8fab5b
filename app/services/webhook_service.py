"""
Webhook Ingestion: consumes authenticated gateway events and resolves them to Orders.

Deliveries may arrive late, early, out of order, or many times. Correctness rests
only on state checks (Order status, attendee membership, processed event ids);
anything already handled is acknowledged, never raised, so the gateway stops retrying.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_sessionmaker
from app.core.errors import AlreadyPaid, InvalidTransition
from app.events.side_effects import SideEffectDispatcher
from app.models.order import Order, OrderStatus
from app.models.processed_event import ProcessedEvent
from app.services import order_ledger
from app.services.event_service import get_event, get_user, is_attendee, lock_event
from app.services.fulfillment_service import fulfill_registration
from app.services.payment_gateway import CheckoutGateway

log = logging.getLogger("webhooks")

SESSION_COMPLETED = "checkout.session.completed"
SESSION_EXPIRED = "checkout.session.expired"


class WebhookOutcome(str, Enum):
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"


def _parse_uuid(value: Any) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


async def _resolve_order(session: AsyncSession, checkout: Dict[str, Any]) -> Optional[Order]:
    """Correlation handle first, then the orderId echoed in the checkout metadata."""
    metadata = checkout.get("metadata") or {}
    order = None
    if checkout.get("id"):
        order = await order_ledger.find_by_session_id(session, checkout["id"])
    if order is None:
        order_id = _parse_uuid(metadata.get("orderId") or checkout.get("client_reference_id"))
        if order_id:
            order = await order_ledger.get_order(session, order_id)
    if order is None:
        return None

    # The metadata triple must agree with the Order it points at
    user_id = _parse_uuid(metadata.get("userId"))
    event_id = _parse_uuid(metadata.get("eventId"))
    if (user_id and user_id != order.user_id) or (event_id and event_id != order.event_id):
        log.warning(f"Session {checkout.get('id')} metadata does not match Order {order.id}")
        return None
    return order


async def _already_processed(session: AsyncSession, event_id: Optional[str]) -> bool:
    if not event_id:
        return False
    return bool(await session.scalar(select(exists().where(ProcessedEvent.event_id == event_id))))


def _record(session: AsyncSession, event_id: Optional[str], event_type: str, outcome: WebhookOutcome) -> None:
    if event_id:
        session.add(ProcessedEvent(event_id=event_id, event_type=event_type, outcome=outcome.value))


async def _record_alone(event_id: Optional[str], event_type: str, outcome: WebhookOutcome) -> None:
    """Records an outcome that changed no Order, in its own transaction."""
    if not event_id:
        return
    try:
        async with get_sessionmaker()() as session:
            async with session.begin():
                _record(session, event_id, event_type, outcome)
    except IntegrityError:
        # A concurrent delivery of the same gateway event got there first
        log.info(f"Gateway event {event_id} already recorded.")


class WebhookProcessor:

    def __init__(self, gateway: CheckoutGateway, dispatcher: SideEffectDispatcher):
        self.gateway = gateway
        self.dispatcher = dispatcher

    async def handle(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Authenticates and processes one delivery. Raises SignatureInvalid before any
        state is read; every other outcome is a success for the gateway.
        """
        event = self.gateway.construct_event(payload, signature)
        event_id = event.get("id")
        event_type = event.get("type", "unknown")

        async with get_sessionmaker()() as session:
            if await _already_processed(session, event_id):
                log.info(f"Idempotency: gateway event {event_id} already processed.")
                return WebhookOutcome.DUPLICATE

        checkout = (event.get("data") or {}).get("object") or {}

        if event_type == SESSION_COMPLETED:
            outcome = await self._on_session_completed(event_id, checkout)
        elif event_type == SESSION_EXPIRED:
            outcome = await self._on_session_expired(event_id, checkout)
        else:
            outcome = WebhookOutcome.IGNORED
            await _record_alone(event_id, event_type, outcome)

        log.info(f"Webhook {event_id} ({event_type}) processed: {outcome.value}")
        return outcome

    async def _on_session_completed(self, event_id: Optional[str], checkout: Dict[str, Any]) -> WebhookOutcome:
        metadata = checkout.get("metadata") or {}
        log.info(
            f"Session {checkout.get('id')} completed: user {metadata.get('userId')}, "
            f"event {metadata.get('eventId')}, order {metadata.get('orderId')}"
        )

        async with get_sessionmaker()() as session:
            order = await _resolve_order(session, checkout)
            event = await get_event(session, order.event_id) if order else None
            user = await get_user(session, order.user_id) if order else None
            attending = bool(order and event and user) and await is_attendee(session, event.id, user.id)

        if not (order and event and user):
            log.warning(f"Registration skipped: unknown event/user/order for session {checkout.get('id')}")
            await _record_alone(event_id, SESSION_COMPLETED, WebhookOutcome.STALE)
            return WebhookOutcome.STALE
        if order.status != OrderStatus.PENDING or attending:
            log.info(f"Registration skipped: Order {order.id} is {order.status.value} or user already attending")
            await _record_alone(event_id, SESSION_COMPLETED, WebhookOutcome.DUPLICATE)
            return WebhookOutcome.DUPLICATE

        # Gateway I/O stays outside the transaction
        payment_method = await self.gateway.retrieve_payment_method(checkout)

        try:
            async with get_sessionmaker()() as session:
                async with session.begin():
                    event = await lock_event(session, event.id)
                    if await is_attendee(session, event.id, user.id):
                        raise InvalidTransition(f"User {user.id} already attending event {event.id}")
                    fields = {"payment_method": payment_method}
                    if checkout.get("id") and not order.gateway_session_id:
                        fields["gateway_session_id"] = checkout["id"]
                    order = await order_ledger.transition(session, order.id, OrderStatus.COMPLETED, fields)
                    effects = await fulfill_registration(session, event, user, order)
                    _record(session, event_id, SESSION_COMPLETED, WebhookOutcome.FULFILLED)
        except (InvalidTransition, AlreadyPaid, IntegrityError) as e:
            # Lost a race with another delivery, or the pair is already paid for
            log.info(f"Order {order.id} not completed by this delivery: {e}")
            await _record_alone(event_id, SESSION_COMPLETED, WebhookOutcome.DUPLICATE)
            return WebhookOutcome.DUPLICATE

        await self.dispatcher.deliver_all(effects)
        log.info(f"Paid registration fulfilled for user {user.id} on event {event.id} (Order {order.id})")
        return WebhookOutcome.FULFILLED

    async def _on_session_expired(self, event_id: Optional[str], checkout: Dict[str, Any]) -> WebhookOutcome:
        async with get_sessionmaker()() as session:
            order = await _resolve_order(session, checkout)

        if order is None or order.status != OrderStatus.PENDING:
            log.info(f"Expiry for session {checkout.get('id')} ignored: no pending order")
            await _record_alone(event_id, SESSION_EXPIRED, WebhookOutcome.STALE)
            return WebhookOutcome.STALE

        try:
            async with get_sessionmaker()() as session:
                async with session.begin():
                    await order_ledger.transition(session, order.id, OrderStatus.FAILED)
                    _record(session, event_id, SESSION_EXPIRED, WebhookOutcome.EXPIRED)
        except (InvalidTransition, IntegrityError) as e:
            log.info(f"Order {order.id} not failed by this delivery: {e}")
            await _record_alone(event_id, SESSION_EXPIRED, WebhookOutcome.STALE)
            return WebhookOutcome.STALE

        log.info(f"Order {order.id} marked as failed (session expired)")
        return WebhookOutcome.EXPIRED
