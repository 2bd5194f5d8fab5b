"""
Abandoned checkout sweep.

A pending Order older than the TTL is failed, but only after the gateway agrees to
close its session. If the gateway refuses, the session may have been paid and its
webhook may still be in flight, so the Order is left for the next sweep.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select

from app.core.config import BATCH_SIZE, PENDING_ORDER_TTL_HOURS
from app.core.db import get_sessionmaker, utcnow
from app.core.errors import InvalidTransition
from app.models.order import Order, OrderStatus
from app.services import order_ledger
from app.services.payment_gateway import CheckoutGateway

log = logging.getLogger("pending_order_sweeper")


async def expire_stale_pending_orders(
    gateway: CheckoutGateway,
    ttl_hours: int = PENDING_ORDER_TTL_HOURS,
    limit: int = BATCH_SIZE,
    now: Optional[datetime] = None,
) -> int:
    """Fails abandoned pending Orders. Returns how many were failed."""
    cutoff = (now or utcnow()) - timedelta(hours=ttl_hours)
    async with get_sessionmaker()() as session:
        result = await session.scalars(
            select(Order)
            .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
            .order_by(Order.created_at)
            .limit(limit)
        )
        stale = list(result.all())

    expired = 0
    for order in stale:
        if order.gateway_session_id and not await gateway.expire_session(order.gateway_session_id):
            log.info(f"Order {order.id} left pending: gateway kept session {order.gateway_session_id} open")
            continue
        try:
            async with get_sessionmaker()() as session:
                async with session.begin():
                    await order_ledger.transition(session, order.id, OrderStatus.FAILED)
        except InvalidTransition as e:
            # Completed by a webhook between the query and now
            log.info(f"Order {order.id} skipped by sweep: {e}")
            continue
        log.info(f"Order {order.id} failed after {ttl_hours}h without payment")
        expired += 1
    return expired
