import logging
from fastapi import APIRouter, Depends, Header, Request
from typing import Optional

from app.api.deps import get_webhook_processor
from app.schemas.webhook import WebhookAck
from app.services.webhook_service import WebhookProcessor

router = APIRouter()
log = logging.getLogger("webhooks")


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook_endpoint(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Gateway callback. The signature is checked against the raw body, so the body is
    read as bytes and never re-serialized. SignatureInvalid renders as 400.
    """
    payload = await request.body()
    await processor.handle(payload, stripe_signature)
    return WebhookAck(received=True)
