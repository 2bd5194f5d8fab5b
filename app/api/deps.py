"""
Collaborators injected into routes and workers. Tests replace them through
``app.dependency_overrides``.
"""
from functools import lru_cache
from typing import AsyncIterator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import REDIS_URL
from app.core.db import get_sessionmaker
from app.events.side_effects import SideEffectDispatcher
from app.services.email_service import Mailer, SmtpMailer
from app.services.notification_service import Broadcaster, NotificationEmitter, NullBroadcaster, RedisBroadcaster
from app.services.payment_gateway import CheckoutGateway, StripeCheckoutGateway
from app.services.webhook_service import WebhookProcessor


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Read-only request session; writes go through the services' own transactions."""
    async with get_sessionmaker()() as session:
        yield session


@lru_cache
def get_gateway() -> CheckoutGateway:
    return StripeCheckoutGateway()


@lru_cache
def get_broadcaster() -> Broadcaster:
    if REDIS_URL:
        return RedisBroadcaster(REDIS_URL)
    return NullBroadcaster()


@lru_cache
def get_mailer() -> Mailer:
    return SmtpMailer()


def get_dispatcher() -> SideEffectDispatcher:
    return SideEffectDispatcher(NotificationEmitter(get_broadcaster()), get_mailer())


def get_webhook_processor(
    gateway: CheckoutGateway = Depends(get_gateway),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> WebhookProcessor:
    return WebhookProcessor(gateway, dispatcher)


def get_current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> UUID:
    """Caller identity, resolved by the upstream auth layer and forwarded as a header."""
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user identity.")
