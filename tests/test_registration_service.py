import pytest
import stripe
from decimal import Decimal
from sqlalchemy import func, select
from uuid import uuid4

from app.core.errors import (
    AlreadyPaid,
    AlreadyRegistered,
    GatewayError,
    NotBookable,
    NotFound,
    RegistrationValidationError,
)
from app.models.event import EventAttendee, EventStatus
from app.models.notification import Notification
from app.models.order import Order, OrderStatus
from app.services import order_ledger
from app.services.event_service import is_attendee
from app.services.registration_service import FreeRegistration, PaidRegistration, register_for_event


async def _count(sessionmaker, model, *conditions):
    async with sessionmaker() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*conditions))


class TestFreeRegistration:
    @pytest.mark.asyncio
    async def test_free_event_is_fulfilled_immediately(self, sessionmaker, member, free_event, creator,
                                                       gateway, dispatcher, mailer, broadcaster):
        result = await register_for_event(member.id, free_event.id, tickets=2, gateway=gateway, dispatcher=dispatcher)

        assert isinstance(result, FreeRegistration)
        assert result.order.status == OrderStatus.COMPLETED
        assert result.order.amount == Decimal("0")
        assert result.order.payment_method == "Free registration"
        assert result.attendee_count == 1

        async with sessionmaker() as session:
            assert await is_attendee(session, free_event.id, member.id)

        # Confirmation email to the registrant, notifications to both parties
        assert [m.to for m in mailer.outbox] == [member.email]
        assert mailer.outbox[0].subject == "Registration Confirmed: Neighbourhood Clean-up"
        assert "Free" in mailer.outbox[0].html
        channels = {channel for channel, _, _ in broadcaster.messages}
        assert channels == {f"user-{member.id}", f"user-{creator.id}"}
        assert await _count(sessionmaker, Notification) == 2

    @pytest.mark.asyncio
    async def test_registering_twice_is_rejected(self, sessionmaker, member, free_event, gateway, dispatcher):
        await register_for_event(member.id, free_event.id, gateway=gateway, dispatcher=dispatcher)

        with pytest.raises(AlreadyRegistered):
            await register_for_event(member.id, free_event.id, gateway=gateway, dispatcher=dispatcher)

        assert await _count(sessionmaker, Order) == 1
        assert await _count(sessionmaker, EventAttendee) == 1

    @pytest.mark.asyncio
    async def test_creator_gets_no_notification_for_own_registration(self, sessionmaker, creator, free_event,
                                                                     gateway, dispatcher, broadcaster):
        await register_for_event(creator.id, free_event.id, gateway=gateway, dispatcher=dispatcher)

        assert [event for _, event, _ in broadcaster.messages] == ["event_registered"]


class TestPaidRegistration:
    @pytest.mark.asyncio
    async def test_paid_event_opens_checkout(self, sessionmaker, member, paid_event, gateway, dispatcher,
                                             stripe_client, mailer):
        result = await register_for_event(member.id, paid_event.id, tickets=2, gateway=gateway, dispatcher=dispatcher)

        assert isinstance(result, PaidRegistration)
        assert result.order.status == OrderStatus.PENDING
        assert result.order.amount == Decimal("50.00")
        assert result.session.session_id == f"cs_test_{result.order.id.hex}"
        assert result.session.redirect_url.startswith("https://checkout.stripe.com/")

        async with sessionmaker() as session:
            stored = await order_ledger.get_order(session, result.order.id)
            assert stored.gateway_session_id == result.session.session_id
            assert not await is_attendee(session, paid_event.id, member.id)

        stripe_client.checkout.Session.create.assert_called_once()
        assert mailer.outbox == []

    @pytest.mark.asyncio
    async def test_retry_creates_a_new_order(self, sessionmaker, member, paid_event, gateway, dispatcher):
        first = await register_for_event(member.id, paid_event.id, gateway=gateway, dispatcher=dispatcher)
        second = await register_for_event(member.id, paid_event.id, gateway=gateway, dispatcher=dispatcher)

        assert first.order.id != second.order.id
        assert await _count(sessionmaker, Order, Order.status == OrderStatus.PENDING) == 2

    @pytest.mark.asyncio
    async def test_completed_order_blocks_new_registration(self, sessionmaker, member, paid_event,
                                                           gateway, dispatcher):
        async with sessionmaker() as session:
            async with session.begin():
                await order_ledger.create_order(
                    session,
                    event_id=paid_event.id,
                    user_id=member.id,
                    amount=Decimal("25.00"),
                    tickets=1,
                    special_requests=None,
                    status=OrderStatus.COMPLETED,
                )

        with pytest.raises(AlreadyPaid):
            await register_for_event(member.id, paid_event.id, gateway=gateway, dispatcher=dispatcher)

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_order_pending_without_handle(self, sessionmaker, member, paid_event,
                                                                        gateway, dispatcher, stripe_client):
        stripe_client.checkout.Session.create.side_effect = stripe.APIConnectionError("Network is down")

        with pytest.raises(GatewayError):
            await register_for_event(member.id, paid_event.id, gateway=gateway, dispatcher=dispatcher)

        async with sessionmaker() as session:
            orders = (await session.scalars(select(Order))).all()
        assert len(orders) == 1
        assert orders[0].status == OrderStatus.PENDING
        assert orders[0].gateway_session_id is None


class TestRejections:
    @pytest.mark.parametrize("tickets", [0, 11, -1])
    @pytest.mark.asyncio
    async def test_ticket_bounds(self, sessionmaker, member, free_event, gateway, dispatcher, tickets):
        with pytest.raises(RegistrationValidationError):
            await register_for_event(member.id, free_event.id, tickets=tickets, gateway=gateway, dispatcher=dispatcher)
        assert await _count(sessionmaker, Order) == 0

    @pytest.mark.asyncio
    async def test_special_requests_length(self, sessionmaker, member, free_event, gateway, dispatcher):
        with pytest.raises(RegistrationValidationError):
            await register_for_event(member.id, free_event.id, special_requests="x" * 501,
                                     gateway=gateway, dispatcher=dispatcher)

    @pytest.mark.asyncio
    async def test_unpublished_event_is_not_bookable(self, sessionmaker, member, creator, make_event,
                                                      gateway, dispatcher):
        draft = await make_event(creator, status=EventStatus.PENDING_APPROVAL)

        with pytest.raises(NotBookable):
            await register_for_event(member.id, draft.id, gateway=gateway, dispatcher=dispatcher)
        assert await _count(sessionmaker, Order) == 0

    @pytest.mark.asyncio
    async def test_missing_event_is_not_bookable(self, sessionmaker, member, gateway, dispatcher):
        with pytest.raises(NotBookable):
            await register_for_event(member.id, uuid4(), gateway=gateway, dispatcher=dispatcher)

    @pytest.mark.asyncio
    async def test_unknown_user(self, sessionmaker, free_event, gateway, dispatcher):
        with pytest.raises(NotFound):
            await register_for_event(uuid4(), free_event.id, gateway=gateway, dispatcher=dispatcher)
