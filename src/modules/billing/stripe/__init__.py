from src.modules.billing.stripe.gateway import (
    BillingGateway,
    BillingGatewayError,
    InvalidWebhookSignatureError,
    StripeGateway,
    ResourceMissingError,
)

__all__ = [
    "BillingGateway",
    "BillingGatewayError",
    "InvalidWebhookSignatureError",
    "StripeGateway",
    "ResourceMissingError",
]
