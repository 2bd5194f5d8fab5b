import pytest
import stripe
from datetime import timedelta
from sqlalchemy import select, update
from unittest.mock import patch

from app.consumers.outbox_poller import poll_outbox_for_new_events, run_once
from app.consumers.pending_order_sweeper import expire_stale_pending_orders
from app.core.config import MAX_ATTEMPTS, OUTBOX_CLAIM_LEASE_SECONDS
from app.core.db import utcnow
from app.events.outbox_utility import claim_outbox_event
from app.events.side_effects import EMAIL_CONFIRMATION, SideEffectDispatcher
from app.models.order import OrderStatus
from app.models.outbox import OutboxEvent
from app.services import order_ledger
from app.services.email_service import RecordingMailer
from app.services.notification_service import NotificationEmitter
from app.services.registration_service import register_for_event
from app.testing.testing_mocks import FailingMailer


async def _outbox(sessionmaker):
    async with sessionmaker() as session:
        return list((await session.scalars(select(OutboxEvent))).all())


async def _order(sessionmaker, order_id):
    async with sessionmaker() as session:
        return await order_ledger.get_order(session, order_id)


class TestOutboxPoller:

    @pytest.mark.asyncio
    async def test_failed_email_is_retried(self, sessionmaker, member, free_event, gateway, dispatcher,
                                           broadcaster, mailer):
        """A registration survives a mail outage; the poller delivers the email later"""
        failing = SideEffectDispatcher(NotificationEmitter(broadcaster), FailingMailer())

        result = await register_for_event(member.id, free_event.id, gateway=gateway, dispatcher=failing)

        assert result.order.status == OrderStatus.COMPLETED
        assert len(broadcaster.messages) == 2  # Notifications went out regardless
        pending = [e for e in await _outbox(sessionmaker) if not e.published]
        assert [(e.event_type, e.attempts) for e in pending] == [(EMAIL_CONFIRMATION, 1)]

        delivered = await poll_outbox_for_new_events(dispatcher)

        assert delivered == 1
        assert [m.to for m in mailer.outbox] == [member.email]
        assert all(e.published for e in await _outbox(sessionmaker))
        # Nothing left to retry
        assert await poll_outbox_for_new_events(dispatcher) == 0

    @pytest.mark.asyncio
    async def test_exhausted_rows_are_not_retried(self, sessionmaker, member, free_event, gateway, broadcaster):
        failing_mailer = FailingMailer()
        failing = SideEffectDispatcher(NotificationEmitter(broadcaster), failing_mailer)
        await register_for_event(member.id, free_event.id, gateway=gateway, dispatcher=failing)

        for _ in range(MAX_ATTEMPTS + 2):
            await poll_outbox_for_new_events(failing)

        assert failing_mailer.attempts == MAX_ATTEMPTS
        email = [e for e in await _outbox(sessionmaker) if e.event_type == EMAIL_CONFIRMATION][0]
        assert email.attempts == MAX_ATTEMPTS
        assert not email.published

    @pytest.mark.asyncio
    async def test_tick_during_in_flight_send_does_not_resend(self, sessionmaker, member, free_event, gateway,
                                                              dispatcher, broadcaster, mailer):
        """The poller wakes up while the request is still talking to SMTP"""
        ticks = []

        class SlowMailer(RecordingMailer):
            async def send(self, to, subject, html):
                ticks.append(await poll_outbox_for_new_events(dispatcher))
                await super().send(to, subject, html)

        slow_mailer = SlowMailer()
        request_dispatcher = SideEffectDispatcher(NotificationEmitter(broadcaster), slow_mailer)

        await register_for_event(member.id, free_event.id, gateway=gateway, dispatcher=request_dispatcher)

        assert ticks == [0]
        assert len(slow_mailer.outbox) + len(mailer.outbox) == 1
        assert all(e.published for e in await _outbox(sessionmaker))

    @pytest.mark.asyncio
    async def test_claimed_row_is_skipped_until_lease_runs_out(self, sessionmaker, member, free_event, gateway,
                                                               dispatcher, broadcaster, mailer):
        failing = SideEffectDispatcher(NotificationEmitter(broadcaster), FailingMailer())
        await register_for_event(member.id, free_event.id, gateway=gateway, dispatcher=failing)
        email = [e for e in await _outbox(sessionmaker) if e.event_type == EMAIL_CONFIRMATION][0]
        assert email.claimed_at is None  # Released after the failed attempt

        async with sessionmaker() as session:
            async with session.begin():
                assert await claim_outbox_event(session, email.id)
                assert not await claim_outbox_event(session, email.id)

        assert await poll_outbox_for_new_events(dispatcher) == 0
        assert await dispatcher.deliver(email) is False
        assert mailer.outbox == []

        # A dispatcher that crashed mid-send leaves its claim behind; it expires
        async with sessionmaker() as session:
            async with session.begin():
                await session.execute(
                    update(OutboxEvent)
                    .where(OutboxEvent.id == email.id)
                    .values(claimed_at=utcnow() - timedelta(seconds=OUTBOX_CLAIM_LEASE_SECONDS + 1))
                )

        assert await poll_outbox_for_new_events(dispatcher) == 1
        assert [m.to for m in mailer.outbox] == [member.email]

    @pytest.mark.asyncio
    async def test_run_once_polls_and_sweeps(self, sessionmaker, dispatcher, gateway):
        with patch("app.consumers.outbox_poller.expire_stale_pending_orders", return_value=0) as mock_sweep:
            await run_once(dispatcher, gateway)
        mock_sweep.assert_awaited_once_with(gateway)


class TestPendingOrderSweeper:

    @pytest.mark.asyncio
    async def test_abandoned_checkout_is_failed(self, sessionmaker, member, paid_event, gateway, dispatcher,
                                                stripe_client):
        checkout = await register_for_event(member.id, paid_event.id, gateway=gateway, dispatcher=dispatcher)

        expired = await expire_stale_pending_orders(gateway, ttl_hours=24, now=utcnow() + timedelta(hours=25))

        assert expired == 1
        stripe_client.checkout.Session.expire.assert_called_once()
        assert stripe_client.checkout.Session.expire.call_args.args[0] == checkout.session.session_id
        assert (await _order(sessionmaker, checkout.order.id)).status == OrderStatus.FAILED

    @pytest.mark.asyncio
    async def test_recent_checkout_is_left_alone(self, sessionmaker, member, paid_event, gateway, dispatcher,
                                                 stripe_client):
        checkout = await register_for_event(member.id, paid_event.id, gateway=gateway, dispatcher=dispatcher)

        expired = await expire_stale_pending_orders(gateway, ttl_hours=24, now=utcnow() + timedelta(hours=1))

        assert expired == 0
        stripe_client.checkout.Session.expire.assert_not_called()
        assert (await _order(sessionmaker, checkout.order.id)).status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_gateway_refusal_keeps_order_pending(self, sessionmaker, member, paid_event, gateway, dispatcher,
                                                       stripe_client):
        """The session may have been paid; its webhook decides"""
        checkout = await register_for_event(member.id, paid_event.id, gateway=gateway, dispatcher=dispatcher)
        stripe_client.checkout.Session.expire.side_effect = stripe.InvalidRequestError(
            "Only Checkout Sessions with a status in open can be expired.", "session"
        )

        expired = await expire_stale_pending_orders(gateway, ttl_hours=24, now=utcnow() + timedelta(hours=25))

        assert expired == 0
        assert (await _order(sessionmaker, checkout.order.id)).status == OrderStatus.PENDING
