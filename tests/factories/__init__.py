"""Test factories for Launchpad models."""

from .base import AsyncSQLAlchemyModelFactory
from .users import UserFactory
from .subscriptions import SubscriptionFactory
from .webhook_events import WebhookEventFactory

__all__ = [
    "AsyncSQLAlchemyModelFactory",
    "UserFactory",
    "SubscriptionFactory",
    "WebhookEventFactory",
]
