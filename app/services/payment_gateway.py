"""
Payment Session Gateway Adapter.

Opens hosted checkout sessions for paid Orders and authenticates the gateway's
webhook callbacks. The Stripe SDK is synchronous, so every call runs in a worker
thread to keep the event loop free.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import stripe
from pydantic import BaseModel

from app.core.config import FRONTEND_URL, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from app.core.db import get_sessionmaker
from app.core.errors import GatewayError, SignatureInvalid
from app.models.event import Event, User
from app.models.order import Order
from app.services import order_ledger

log = logging.getLogger("payment_gateway")

DEFAULT_PAYMENT_METHOD = "Stripe Payment"


class CheckoutSession(BaseModel):
    session_id: str
    redirect_url: str


def to_minor_units(amount: Decimal) -> int:
    """Decimal currency units to integer cents, without float rounding."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CheckoutGateway(ABC):
    """What the pipeline needs from an external payment gateway."""

    @abstractmethod
    async def create_session(self, order: Order, event: Event, user: User) -> CheckoutSession:
        pass

    @abstractmethod
    async def retrieve_payment_method(self, session: Dict[str, Any]) -> str:
        """Human-readable payment-method descriptor for a completed session."""
        pass

    @abstractmethod
    async def expire_session(self, session_id: str) -> bool:
        """Asks the gateway to close an open session. False if it refuses."""
        pass

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verifies the signature and returns the parsed event, or raises SignatureInvalid."""
        pass


class StripeCheckoutGateway(CheckoutGateway):

    def __init__(self, api_key: str = STRIPE_SECRET_KEY, webhook_secret: str = STRIPE_WEBHOOK_SECRET,
                 frontend_url: str = FRONTEND_URL, stripe_client=stripe):
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._frontend_url = frontend_url.rstrip("/")
        self._stripe = stripe_client

    def _session_params(self, order: Order, event: Event, user: User) -> Dict[str, Any]:
        tickets = order.tickets
        date_label = event.starts_at.strftime("%m/%d/%Y")
        description = event.description or event.title
        if len(description) > 100:
            description = description[:100] + "..."
        return {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": order.currency,
                        "product_data": {
                            "name": f"{event.title} - {date_label} ({tickets} ticket{'s' if tickets > 1 else ''})",
                            "description": description,
                        },
                        "unit_amount": to_minor_units(event.price),
                    },
                    "quantity": tickets,
                }
            ],
            "success_url": f"{self._frontend_url}/events/payment-success/{event.id}?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self._frontend_url}/events/{event.id}?canceled=true",
            "customer_email": user.email,
            "client_reference_id": str(order.id),
            "metadata": {
                "userId": str(user.id),
                "eventId": str(event.id),
                "orderId": str(order.id),
            },
        }

    async def create_session(self, order: Order, event: Event, user: User) -> CheckoutSession:
        params = self._session_params(order, event, user)
        try:
            session = await asyncio.to_thread(
                self._stripe.checkout.Session.create,
                api_key=self._api_key,
                # One session per Order, even if the request is retried
                idempotency_key=f"checkout_{order.id}",
                **params,
            )
        except stripe.StripeError as e:
            log.error(f"Checkout session creation failed for Order {order.id}: {e}")
            raise GatewayError(f"Payment gateway rejected the checkout request: {e.user_message or e}")

        log.info(f"Checkout session {session.id} opened for Order {order.id}")
        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    async def retrieve_payment_method(self, session: Dict[str, Any]) -> str:
        intent_id = session.get("payment_intent")
        if not intent_id:
            return DEFAULT_PAYMENT_METHOD
        try:
            intent = await asyncio.to_thread(
                self._stripe.PaymentIntent.retrieve,
                intent_id,
                expand=["payment_method"],
                api_key=self._api_key,
            )
            last4 = intent.payment_method.card.last4
        except (stripe.StripeError, AttributeError, KeyError, TypeError) as e:
            log.warning(f"Could not resolve payment method for intent {intent_id}: {e}")
            return DEFAULT_PAYMENT_METHOD
        return f"Card ending in {last4 or '****'}"

    async def expire_session(self, session_id: str) -> bool:
        try:
            await asyncio.to_thread(self._stripe.checkout.Session.expire, session_id, api_key=self._api_key)
        except stripe.StripeError as e:
            # Stripe refuses once the session is complete or already expired
            log.warning(f"Gateway refused to expire session {session_id}: {e}")
            return False
        log.info(f"Checkout session {session_id} expired at the gateway")
        return True

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not signature or not self._webhook_secret:
            raise SignatureInvalid("Invalid webhook signature")
        try:
            self._stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
            return json.loads(payload)
        except (stripe.SignatureVerificationError, ValueError) as e:
            # Never echo the reason back to the caller
            log.warning(f"Webhook signature verification failed: {e}")
            raise SignatureInvalid("Invalid webhook signature")


async def open_checkout_session(gateway: CheckoutGateway, order: Order, event: Event, user: User) -> CheckoutSession:
    """
    Opens a session for a pending Order and writes the correlation handle back onto
    the Order before returning. On GatewayError the Order stays pending without a handle.
    """
    checkout = await gateway.create_session(order, event, user)
    async with get_sessionmaker()() as session:
        async with session.begin():
            await order_ledger.attach_session_id(session, order.id, checkout.session_id)
    order.gateway_session_id = checkout.session_id
    return checkout
