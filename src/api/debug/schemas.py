"""Debug API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from src.api.billing.schemas import SubscriptionModel


class WebhookEventModel(BaseModel):
    id: UUID
    stripe_event_id: str
    event_type: str
    processed: bool
    error_message: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookEventDetailModel(WebhookEventModel):
    data: dict[str, Any]


class WebhookEventStatsModel(BaseModel):
    total: int
    processed: int
    unprocessed: int
    by_type: dict[str, int]

    model_config = {"from_attributes": True}


class ReprocessResultModel(BaseModel):
    event_id: str
    event_type: str
    processed: bool


class ClearedEventsModel(BaseModel):
    deleted: int


class SubscriptionDebugModel(BaseModel):
    """Local record next to the live Stripe subscription."""

    subscription: SubscriptionModel
    provider_subscription: dict[str, Any] | None
    provider_error: str | None
    in_sync: bool


class SubscriptionSyncModel(BaseModel):
    before: SubscriptionModel
    after: SubscriptionModel


class SubscriptionResetModel(BaseModel):
    deleted: bool
