"""
Post-commit side-effect dispatch.

Each OutboxEvent is delivered on its own: one failing email never blocks the
notifications next to it, and never reaches the caller that committed the state
change. A row is claimed before it is dispatched, so the request that committed it
and a poller tick never send it twice. Failed rows are released and stay
unpublished for the outbox poller to retry.
"""
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.db import get_sessionmaker
from app.events.outbox_utility import claim_outbox_event
from app.models.notification import NotificationType
from app.models.outbox import OutboxEvent
from app.services.email_service import Mailer
from app.services.notification_service import NotificationEmitter

log = logging.getLogger("side_effects")

NOTIFY_REGISTRANT = "notification.registrant.v1"
NOTIFY_CREATOR = "notification.creator.v1"
EMAIL_CONFIRMATION = "email.confirmation.v1"
EMAIL_RECEIPT = "email.receipt.v1"


class SideEffectDispatcher:

    def __init__(self, notifier: NotificationEmitter, mailer: Mailer,
                 session_factory: Optional[async_sessionmaker] = None):
        self.notifier = notifier
        self.mailer = mailer
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory or get_sessionmaker()

    async def dispatch(self, session: AsyncSession, event: OutboxEvent) -> None:
        """Routes an OutboxEvent to the notification channel or the mailer."""
        payload = event.payload
        event_type = event.event_type

        if event_type in (NOTIFY_REGISTRANT, NOTIFY_CREATOR):
            await self.notifier.emit(
                session,
                user_id=UUID(payload["user_id"]),
                message=payload["message"],
                notification_type=NotificationType(payload["type"]),
                event_id=UUID(payload["event_id"]) if payload.get("event_id") else None,
                channel_event=payload["channel_event"],
                data=payload.get("data", {}),
            )

        elif event_type in (EMAIL_CONFIRMATION, EMAIL_RECEIPT):
            await self.mailer.send(payload["to"], payload["subject"], payload["html"])

        else:
            log.warning(f"No handler found for side effect type: {event_type}")

    async def deliver(self, event: OutboxEvent) -> bool:
        """Claims one row, dispatches it and records the outcome on it. Never raises."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    claimed = await claim_outbox_event(session, event.id)
        except Exception as e:
            log.error(f"Could not claim side effect {event.id}: {e}")
            return False
        if not claimed:
            log.info(f"Side effect {event.id} is already published or being delivered elsewhere; skipping.")
            return False

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self.dispatch(session, event)
                    await session.execute(
                        update(OutboxEvent)
                        .where(OutboxEvent.id == event.id)
                        .values(published=True)
                        .execution_options(synchronize_session=False)
                    )
            event.published = True
            return True
        except Exception as e:
            log.error(
                f"Side effect {event.event_type} for order {event.aggregate_id} failed "
                f"(attempt {event.attempts + 1}): {e}"
            )
            await self._record_failure(event)
            return False

    async def _record_failure(self, event: OutboxEvent) -> None:
        # Count the attempt and release the claim so the poller can pick the row up again
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(OutboxEvent)
                        .where(OutboxEvent.id == event.id)
                        .values(attempts=OutboxEvent.attempts + 1, claimed_at=None)
                        .execution_options(synchronize_session=False)
                    )
            event.attempts += 1
            event.claimed_at = None
        except Exception as e:
            log.error(f"Could not record failed attempt for side effect {event.id}: {e}")

    async def deliver_all(self, events: Iterable[OutboxEvent]) -> int:
        delivered = 0
        for event in events:
            if await self.deliver(event):
                delivered += 1
        return delivered
