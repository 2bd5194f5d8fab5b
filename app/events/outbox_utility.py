from datetime import timedelta
from typing import Dict, Any, List
from uuid import UUID

from sqlalchemy import exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import OUTBOX_CLAIM_LEASE_SECONDS
from app.core.db import utcnow
from app.models.outbox import OutboxEvent


async def create_outbox_event(
    session: AsyncSession,
    aggregate_type: str,
    aggregate_id: UUID,
    event_type: str,
    payload: Dict[str, Any],
) -> OutboxEvent:
    """
    Adds a new Outbox record to the provided session (transaction).

    CRITICAL: Using the caller's session ensures the side effect is recorded atomically
    with the attendance change that caused it.
    """
    event = OutboxEvent(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        event_type=event_type,
        payload=payload,
        published=False,
        attempts=0,
    )
    session.add(event)
    await session.flush()
    return event


async def has_outbox_events(session: AsyncSession, aggregate_type: str, aggregate_id: UUID) -> bool:
    return bool(await session.scalar(select(exists().where(
        OutboxEvent.aggregate_type == aggregate_type, OutboxEvent.aggregate_id == aggregate_id
    ))))


def _claimable(lease_seconds: int):
    # Unclaimed, or claimed by a dispatcher that never finished within the lease
    cutoff = utcnow() - timedelta(seconds=lease_seconds)
    return or_(OutboxEvent.claimed_at.is_(None), OutboxEvent.claimed_at < cutoff)


async def fetch_undelivered(
    session: AsyncSession, max_attempts: int, limit: int, lease_seconds: int = OUTBOX_CLAIM_LEASE_SECONDS
) -> List[OutboxEvent]:
    """Unpublished, unclaimed rows that have not exhausted their retries, oldest first."""
    result = await session.scalars(
        select(OutboxEvent)
        .where(OutboxEvent.published.is_(False), OutboxEvent.attempts < max_attempts, _claimable(lease_seconds))
        .order_by(OutboxEvent.created_at)
        .limit(limit)
    )
    return list(result.all())


async def claim_outbox_event(
    session: AsyncSession, event_id: UUID, lease_seconds: int = OUTBOX_CLAIM_LEASE_SECONDS
) -> bool:
    """
    Marks a row as being delivered. Only one caller wins; everyone else gets False
    until the winner publishes the row, releases it, or lets the lease run out.
    """
    result = await session.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == event_id, OutboxEvent.published.is_(False), _claimable(lease_seconds))
        .values(claimed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)
