from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway for every authenticated delivery."""
    received: bool = True
