"""Billing API schemas (combined requests/models)."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from src.database.models import Subscription, SubscriptionStatus
from src.modules.billing.plans import PlanCatalogEntry, get_plan_limits
from src.utils.time_helpers import from_unix_timestamp


class PlanLimitsModel(BaseModel):
    max_files: int | None
    max_storage_bytes: int | None
    max_posts: int | None

    model_config = {"from_attributes": True}


class PlanModel(BaseModel):
    name: str
    credits: int | None
    limits: PlanLimitsModel
    price_ids: list[str]

    @classmethod
    def from_catalog_entry(cls, entry: PlanCatalogEntry) -> PlanModel:
        return cls(
            name=entry.name.value,
            credits=entry.credits,
            limits=PlanLimitsModel.model_validate(entry.limits),
            price_ids=list(entry.price_ids),
        )


class SubscriptionModel(BaseModel):
    id: UUID
    user_id: UUID
    stripe_customer_id: str
    stripe_subscription_id: str | None
    status: SubscriptionStatus
    plan_name: str
    price_id: str | None
    cancel_at_period_end: bool
    current_period_start: datetime | None
    current_period_end: datetime | None
    credits_total: int | None
    credits_used: int
    credits_remaining: int | None
    credits_reset_at: datetime | None
    is_entitled: bool
    limits: PlanLimitsModel
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, subscription: Subscription) -> SubscriptionModel:
        return cls(
            id=subscription.id,
            user_id=subscription.user_id,
            stripe_customer_id=subscription.stripe_customer_id,
            stripe_subscription_id=subscription.stripe_subscription_id,
            status=subscription.status,
            plan_name=subscription.plan_name,
            price_id=subscription.price_id,
            cancel_at_period_end=subscription.cancel_at_period_end,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            credits_total=subscription.credits_total,
            credits_used=subscription.credits_used,
            credits_remaining=subscription.credits_remaining,
            credits_reset_at=subscription.credits_reset_at,
            is_entitled=subscription.is_entitled,
            limits=PlanLimitsModel.model_validate(
                get_plan_limits(subscription.plan_name)
            ),
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class CancellationModel(BaseModel):
    """Stripe's view right after a cancellation flag change."""

    subscription_id: str
    status: str | None
    cancel_at_period_end: bool
    current_period_end: datetime | None

    @classmethod
    def from_provider(cls, provider_subscription: dict[str, Any]) -> CancellationModel:
        period_end = provider_subscription.get("current_period_end")
        if not period_end:
            items = (provider_subscription.get("items") or {}).get("data") or []
            period_end = items[0].get("current_period_end") if items else None
        return cls(
            subscription_id=provider_subscription["id"],
            status=provider_subscription.get("status"),
            cancel_at_period_end=bool(provider_subscription.get("cancel_at_period_end")),
            current_period_end=from_unix_timestamp(period_end),
        )


class SwitchPlanRequest(BaseModel):
    new_price_id: str = Field(..., min_length=1)


class CheckoutSessionRequest(BaseModel):
    price_id: str = Field(..., min_length=1)
    success_url: str
    cancel_url: str

    @field_validator("success_url", "cancel_url")
    @classmethod
    def validate_urls(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str | None


class PortalSessionRequest(BaseModel):
    return_url: str

    @field_validator("return_url")
    @classmethod
    def validate_return_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v


class PortalSessionResponse(BaseModel):
    url: str
