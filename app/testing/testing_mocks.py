"""Test doubles for the payment gateway and the mailer."""
import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import stripe

from app.services.email_service import Mailer
from app.services.payment_gateway import StripeCheckoutGateway

TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_API_KEY = "sk_test_123"
TEST_FRONTEND_URL = "http://localhost:10200"


def _fake_session(**params) -> SimpleNamespace:
    session_id = f"cs_test_{params['metadata']['orderId'].replace('-', '')}"
    return SimpleNamespace(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")


def mock_stripe_client(last4: str = "4242") -> MagicMock:
    """
    Stands in for the ``stripe`` module. Session/PaymentIntent calls are mocked;
    webhook verification is the real ``stripe.Webhook``.
    """
    client = MagicMock()
    client.checkout.Session.create.side_effect = _fake_session
    client.checkout.Session.expire.return_value = SimpleNamespace(status="expired")
    client.PaymentIntent.retrieve.return_value = SimpleNamespace(
        payment_method=SimpleNamespace(card=SimpleNamespace(last4=last4))
    )
    client.Webhook = stripe.Webhook
    return client


def make_test_gateway(stripe_client: Optional[MagicMock] = None) -> StripeCheckoutGateway:
    return StripeCheckoutGateway(
        api_key=TEST_API_KEY,
        webhook_secret=TEST_WEBHOOK_SECRET,
        frontend_url=TEST_FRONTEND_URL,
        stripe_client=stripe_client or mock_stripe_client(),
    )


def sign_payload(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Builds a Stripe-Signature header the way Stripe signs webhook deliveries."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def checkout_event(
    event_type: str,
    session_id: Optional[str],
    metadata: Dict[str, Any],
    event_id: str = "evt_test_1",
    payment_intent: Optional[str] = "pi_test_1",
) -> str:
    """Serialized checkout.session.* webhook event."""
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": payment_intent,
                "client_reference_id": metadata.get("orderId"),
                "metadata": metadata,
            }
        },
    })


class FailingMailer(Mailer):
    """Fails every send, counting the attempts."""

    def __init__(self):
        self.attempts = 0

    async def send(self, to: str, subject: str, html: str) -> None:
        self.attempts += 1
        raise ConnectionError("SMTP server unavailable")
