"""Database models for Launchpad API."""

from .base import Base
from .subscriptions import Subscription, SubscriptionStatus
from .users import User
from .webhook_events import WebhookEvent

__all__ = [
    # Base
    "Base",
    # Enums
    "SubscriptionStatus",
    # Models
    "User",
    "Subscription",
    "WebhookEvent",
]
