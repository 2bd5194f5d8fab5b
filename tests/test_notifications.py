import json
from unittest.mock import AsyncMock, patch
import pytest

from sqlalchemy import select

from app.models.notification import Notification, NotificationType
from app.services.notification_service import InMemoryBroadcaster, NotificationEmitter, RedisBroadcaster, user_channel


class TestRedisBroadcaster:
    @pytest.mark.asyncio
    async def test_publishes_json_to_user_channel(self):
        fake_redis = AsyncMock()
        with patch("app.services.notification_service.aioredis.from_url", return_value=fake_redis) as mock_from_url:
            broadcaster = RedisBroadcaster("redis://localhost:6379/0")
            await broadcaster.publish("user-42", "event_registered", {"title": "Clean-up"})
            await broadcaster.close()

        mock_from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)
        channel, message = fake_redis.publish.await_args.args
        assert channel == "user-42"
        assert json.loads(message) == {"event": "event_registered", "data": {"title": "Clean-up"}}
        fake_redis.aclose.assert_awaited_once()


class TestNotificationEmitter:
    @pytest.mark.asyncio
    async def test_persists_and_broadcasts(self, sessionmaker, member, free_event):
        broadcaster = InMemoryBroadcaster()
        emitter = NotificationEmitter(broadcaster)

        async with sessionmaker() as session:
            async with session.begin():
                await emitter.emit(
                    session,
                    user_id=member.id,
                    message="You are registered",
                    notification_type=NotificationType.EVENT_REGISTRATION,
                    event_id=free_event.id,
                    channel_event="event_registered",
                    data={"eventId": str(free_event.id)},
                )

        async with sessionmaker() as session:
            stored = (await session.scalars(select(Notification))).one()
        assert stored.user_id == member.id
        assert stored.type == NotificationType.EVENT_REGISTRATION
        assert stored.is_read is False
        assert broadcaster.messages == [(user_channel(member.id), "event_registered", {"eventId": str(free_event.id)})]
