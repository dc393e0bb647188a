"""Stripe-facing billing constants."""

from enum import Enum


class StripeEventType(str, Enum):
    """Webhook event types with a reconciliation handler."""

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_CREATED = "invoice.created"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


# Stripe subscription statuses that still accept item changes
MODIFIABLE_PROVIDER_STATUSES = frozenset({"active", "past_due", "trialing"})

# Stripe statuses picked by linkage repair, in the order Stripe lists them
SYNCABLE_PROVIDER_STATUSES = MODIFIABLE_PROVIDER_STATUSES

PRORATION_BEHAVIOR = "create_prorations"
SUBSCRIPTION_LIST_LIMIT = 10
