"""
In-app notifications: a persisted record plus a push on the user's live channel.

The live channel is an injected Broadcaster so the process holds no global
socket handle and tests can swap in a recorder.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import Notification, NotificationType

log = logging.getLogger("notifications")


def user_channel(user_id) -> str:
    return f"user-{user_id}"


class Broadcaster(ABC):

    @abstractmethod
    async def publish(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        pass

    async def close(self) -> None:
        return None


class NullBroadcaster(Broadcaster):
    """Used when no live channel is configured."""

    async def publish(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        return None


class InMemoryBroadcaster(Broadcaster):
    """Keeps every message; for tests and local runs."""

    def __init__(self):
        self.messages: List[Tuple[str, str, Dict[str, Any]]] = []

    async def publish(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        self.messages.append((channel, event, data))


class RedisBroadcaster(Broadcaster):
    """Publishes to Redis pub/sub; the websocket gateway relays per-user channels."""

    def __init__(self, redis_url: str):
        self._redis = aioredis.from_url(redis_url, decode_responses=True)

    async def publish(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        message = json.dumps({"event": event, "data": data}, default=str)
        await self._redis.publish(channel, message)

    async def close(self) -> None:
        await self._redis.aclose()


class NotificationEmitter:

    def __init__(self, broadcaster: Optional[Broadcaster] = None):
        self.broadcaster = broadcaster or NullBroadcaster()

    async def emit(
        self,
        session: AsyncSession,
        user_id: UUID,
        message: str,
        notification_type: NotificationType,
        event_id: Optional[UUID],
        channel_event: str,
        data: Dict[str, Any],
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            event_id=event_id,
            message=message[:500],
            type=notification_type,
        )
        session.add(notification)
        await session.flush()
        await self.broadcaster.publish(user_channel(user_id), channel_event, data)
        log.info(f"Notification {notification_type.value} sent to user {user_id}")
        return notification
