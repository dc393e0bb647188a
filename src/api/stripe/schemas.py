from pydantic import BaseModel


class WebhookReceipt(BaseModel):
    received: bool
    processed: bool
    duplicate: bool = False
