# app/scripts/seed_data.py
import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import close_db, get_sessionmaker, init_db, utcnow
from app.models.event import Event, EventStatus, User


async def get_or_create_user(session: AsyncSession, username: str, email: str) -> User:
    user = await session.scalar(select(User).where(User.username == username))
    if user is None:
        user = User(username=username, email=email)
        session.add(user)
        await session.flush()
    return user


async def get_or_create_event(session: AsyncSession, creator: User, title: str, **defaults) -> Event:
    event = await session.scalar(select(Event).where(Event.title == title, Event.creator_id == creator.id))
    if event is None:
        event = Event(title=title, creator_id=creator.id, **defaults)
        session.add(event)
        await session.flush()
    # If existing, make sure it is still bookable (idempotent)
    event.status = EventStatus.PUBLISHED
    return event


async def seed(session: AsyncSession):
    # Users: one organizer, one attendee
    creator = await get_or_create_user(session, "organizer", "organizer@example.com")
    member = await get_or_create_user(session, "member", "member@example.com")
    print("Organizer:", creator.id)
    print("Member:", member.id)

    starts_at = utcnow() + timedelta(days=14)

    # One free and one paid event, both bookable
    free_event = await get_or_create_event(
        session,
        creator,
        "Neighbourhood Clean-up",
        description="Meet at the park entrance. Gloves provided.",
        starts_at=starts_at,
        location="Riverside Park",
        category="Volunteer",
        price=Decimal("0"),
        status=EventStatus.PUBLISHED,
    )
    paid_event = await get_or_create_event(
        session,
        creator,
        "Intro to Pottery Workshop",
        description="Two hours at the wheel with a local ceramicist. All materials included.",
        starts_at=starts_at + timedelta(days=1),
        location="Community Arts Centre",
        category="Workshop",
        price=Decimal("25.00"),
        status=EventStatus.PUBLISHED,
    )

    print("Free event:", free_event.id)
    print("Paid event:", paid_event.id)


async def main():
    await init_db()
    async with get_sessionmaker()() as session:
        async with session.begin():
            await seed(session)
    await close_db()

if __name__ == "__main__":
    asyncio.run(main())
