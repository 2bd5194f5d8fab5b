"""
Order Ledger: the durable record of every registration attempt.

The ledger is the only place Order status changes. Transitions are conditional
updates keyed on the expected prior status, so concurrent webhook deliveries for
the same Order cannot both win.
"""
import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import PAYMENT_CURRENCY
from app.core.db import utcnow
from app.core.errors import AlreadyPaid, InvalidTransition, NotFound, OrderAlreadyCompleted
from app.models.order import ORDER_TRANSITIONS, Order, OrderStatus

log = logging.getLogger("order_ledger")

CENT = Decimal("0.01")


def compute_amount(price: Decimal, tickets: int) -> Decimal:
    """Exact order total in currency units, rounded to cents."""
    return (Decimal(price) * tickets).quantize(CENT)


async def has_completed_order(
    session: AsyncSession, user_id: UUID, event_id: UUID, exclude: Optional[UUID] = None
) -> bool:
    conditions = [Order.user_id == user_id, Order.event_id == event_id, Order.status == OrderStatus.COMPLETED]
    if exclude is not None:
        conditions.append(Order.id != exclude)
    return bool(await session.scalar(select(exists().where(*conditions))))


async def create_order(
    session: AsyncSession,
    event_id: UUID,
    user_id: UUID,
    amount: Decimal,
    tickets: int,
    special_requests: Optional[str],
    status: OrderStatus,
    payment_method: Optional[str] = None,
    gateway_session_id: Optional[str] = None,
) -> Order:
    """
    Records a new Order. Creating an Order directly in COMPLETED (free path) is held
    to the same one-completed-per-(user, event) rule as a transition.
    """
    if status == OrderStatus.COMPLETED and await has_completed_order(session, user_id, event_id):
        raise AlreadyPaid()

    order = Order(
        user_id=user_id,
        event_id=event_id,
        amount=amount,
        currency=PAYMENT_CURRENCY,
        tickets=tickets,
        special_requests=special_requests or None,
        status=status,
        payment_method=payment_method,
        gateway_session_id=gateway_session_id,
    )
    session.add(order)
    await session.flush()
    log.info(f"Order {order.id} created: status={status.value} amount={amount} tickets={tickets}")
    return order


async def get_order(session: AsyncSession, order_id: UUID) -> Optional[Order]:
    return await session.get(Order, order_id)


async def find_by_session_id(session: AsyncSession, gateway_session_id: str) -> Optional[Order]:
    return await session.scalar(select(Order).where(Order.gateway_session_id == gateway_session_id))


async def list_orders(
    session: AsyncSession, event_id: Optional[UUID] = None, status: Optional[OrderStatus] = None
) -> List[Order]:
    query = select(Order)
    if event_id is not None:
        query = query.where(Order.event_id == event_id)
    if status is not None:
        query = query.where(Order.status == status)
    result = await session.scalars(query.order_by(Order.created_at.desc()))
    return list(result.all())


async def attach_session_id(session: AsyncSession, order_id: UUID, gateway_session_id: str) -> None:
    """Stores the gateway correlation handle on a pending Order that has none yet."""
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING, Order.gateway_session_id.is_(None))
        .values(gateway_session_id=gateway_session_id)
        .execution_options(synchronize_session=False)
    )
    updated = result.rowcount
    if not updated:
        # The Order may have already been completed by a fast webhook; keep the handle anyway.
        result = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.gateway_session_id.is_(None))
            .values(gateway_session_id=gateway_session_id)
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount
    if updated:
        log.info(f"Order {order_id} correlated with gateway session {gateway_session_id}")


async def transition(
    session: AsyncSession, order_id: UUID, new_status: OrderStatus, fields: Optional[dict] = None
) -> Order:
    """
    Moves an Order to ``new_status`` if the legal-transition table allows it.

    Raises NotFound, OrderAlreadyCompleted (a second completion), InvalidTransition,
    or AlreadyPaid (another Order for the same user/event is already completed).
    """
    order = await session.get(Order, order_id, populate_existing=True)
    if not order:
        raise NotFound(f"Order {order_id} not found")

    _check_transition(order, new_status)

    if new_status == OrderStatus.COMPLETED and await has_completed_order(
        session, order.user_id, order.event_id, exclude=order.id
    ):
        raise AlreadyPaid()

    changes = dict(fields or {})
    changes["status"] = new_status
    changes.setdefault("updated_at", utcnow())
    # Conditional update: only succeeds if nobody moved the Order since we read it.
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == order.status)
        .values(**changes)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        current = await session.get(Order, order_id, populate_existing=True)
        _check_transition(current, new_status)
        raise InvalidTransition(f"Order {order_id} changed concurrently (now {current.status.value})")

    await session.refresh(order)
    log.info(f"Order {order_id} transitioned to {new_status.value}")
    return order


def _check_transition(order: Order, new_status: OrderStatus) -> None:
    if order.status == OrderStatus.COMPLETED and new_status == OrderStatus.COMPLETED:
        raise OrderAlreadyCompleted(f"Order {order.id} is already completed")
    if new_status not in ORDER_TRANSITIONS[order.status]:
        raise InvalidTransition(
            f"Order {order.id} cannot move from {order.status.value} to {new_status.value}"
        )
