"""Event/User lookups and the attendee-set projection."""
from typing import List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import exists, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import utcnow
from app.models.event import Event, EventAttendee, EventStatus, User


async def get_user(session: AsyncSession, user_id: UUID) -> Optional[User]:
    return await session.get(User, user_id)


async def get_event(session: AsyncSession, event_id: UUID) -> Optional[Event]:
    return await session.get(Event, event_id)


async def lock_event(session: AsyncSession, event_id: UUID) -> Optional[Event]:
    """
    Reads the Event with a row lock held until the surrounding transaction ends.
    Registration checks and attendee writes for one Event are serialized on it.
    """
    return await session.scalar(
        select(Event).where(Event.id == event_id).with_for_update().execution_options(populate_existing=True)
    )


async def is_attendee(session: AsyncSession, event_id: UUID, user_id: UUID) -> bool:
    return bool(await session.scalar(
        select(exists().where(EventAttendee.event_id == event_id, EventAttendee.user_id == user_id))
    ))


def _insert_ignoring_conflicts(session: AsyncSession):
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(EventAttendee).on_conflict_do_nothing(index_elements=["event_id", "user_id"])
    if dialect == "sqlite":
        return sqlite.insert(EventAttendee).on_conflict_do_nothing(index_elements=["event_id", "user_id"])
    raise NotImplementedError(f"Unsupported database dialect: {dialect}")


async def add_attendee(session: AsyncSession, event_id: UUID, user_id: UUID) -> bool:
    """
    Adds the user to the attendee set if absent. Returns False if already a member.
    The insert ignores unique conflicts, so a racing duplicate is a no-op, not an error.
    """
    if await is_attendee(session, event_id, user_id):
        return False
    result = await session.execute(
        _insert_ignoring_conflicts(session).values(
            id=uuid4(), event_id=event_id, user_id=user_id, created_at=utcnow()
        )
    )
    return bool(result.rowcount)


async def attendee_count(session: AsyncSession, event_id: UUID) -> int:
    return await session.scalar(
        select(func.count()).select_from(EventAttendee).where(EventAttendee.event_id == event_id)
    )


async def registered_events(
    session: AsyncSession, user_id: UUID, page: int = 1, limit: int = 10
) -> Tuple[List[Event], int]:
    """Published events the user attends, soonest first."""
    attending = select(EventAttendee.event_id).where(EventAttendee.user_id == user_id)
    conditions = (Event.id.in_(attending), Event.status == EventStatus.PUBLISHED)

    total = await session.scalar(select(func.count()).select_from(Event).where(*conditions))
    if not total:
        return [], 0
    result = await session.scalars(
        select(Event).where(*conditions).order_by(Event.starts_at).offset((page - 1) * limit).limit(limit)
    )
    return list(result.all()), total
