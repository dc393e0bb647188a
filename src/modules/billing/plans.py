"""Plan and credit policy.

Pure lookups from a plan name (or a Stripe price id) to the plan's credit
allocation and feature limits. Every lookup is total: ``None``, empty and
unknown names resolve to the FREE tier, and names are matched without regard
to case.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from src.utils.settings.stripe import StripeSettings

_stripe_settings = StripeSettings()

MB = 1024 * 1024
GB = 1024 * MB

PlanFeature = Literal["files", "storage", "posts"]


class PlanName(str, Enum):
    FREE = "FREE"
    STARTUP = "STARTUP"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


@dataclass(frozen=True)
class PlanLimits:
    """Feature limits of a plan. ``None`` means unlimited."""

    max_files: int | None
    max_storage_bytes: int | None
    max_posts: int | None

    def limit_for(self, feature: PlanFeature) -> int | None:
        return {
            "files": self.max_files,
            "storage": self.max_storage_bytes,
            "posts": self.max_posts,
        }[feature]


@dataclass(frozen=True)
class PlanPolicy:
    name: PlanName
    # None means unlimited
    credits: int | None
    limits: PlanLimits


PLAN_POLICIES: dict[PlanName, PlanPolicy] = {
    PlanName.FREE: PlanPolicy(
        name=PlanName.FREE,
        credits=10,
        limits=PlanLimits(max_files=10, max_storage_bytes=100 * MB, max_posts=5),
    ),
    PlanName.STARTUP: PlanPolicy(
        name=PlanName.STARTUP,
        credits=500,
        limits=PlanLimits(max_files=100, max_storage_bytes=1 * GB, max_posts=50),
    ),
    PlanName.PRO: PlanPolicy(
        name=PlanName.PRO,
        credits=2000,
        limits=PlanLimits(max_files=1000, max_storage_bytes=10 * GB, max_posts=500),
    ),
    PlanName.ENTERPRISE: PlanPolicy(
        name=PlanName.ENTERPRISE,
        credits=None,
        limits=PlanLimits(max_files=None, max_storage_bytes=None, max_posts=None),
    ),
}

# Legacy plan names still present on older records
PLAN_ALIASES: dict[str, PlanName] = {
    "BASIC": PlanName.STARTUP,
}

PRICE_TO_PLAN: dict[str, PlanName] = {
    _stripe_settings.STRIPE_PRICE_STARTUP_MONTHLY: PlanName.STARTUP,
    _stripe_settings.STRIPE_PRICE_STARTUP_YEARLY: PlanName.STARTUP,
    _stripe_settings.STRIPE_PRICE_PRO_MONTHLY: PlanName.PRO,
    _stripe_settings.STRIPE_PRICE_PRO_YEARLY: PlanName.PRO,
    _stripe_settings.STRIPE_PRICE_ENTERPRISE_MONTHLY: PlanName.ENTERPRISE,
    _stripe_settings.STRIPE_PRICE_ENTERPRISE_YEARLY: PlanName.ENTERPRISE,
}

FREE_PLAN_CREDITS = PLAN_POLICIES[PlanName.FREE].credits


def resolve_plan(plan_name: str | PlanName | None) -> PlanName:
    """Normalize any plan name to a known plan, defaulting to FREE."""
    if isinstance(plan_name, PlanName):
        return plan_name
    if not plan_name or not isinstance(plan_name, str):
        return PlanName.FREE

    normalized = plan_name.strip().upper()
    if normalized in PLAN_ALIASES:
        return PLAN_ALIASES[normalized]
    try:
        return PlanName(normalized)
    except ValueError:
        return PlanName.FREE


def get_plan_policy(plan_name: str | PlanName | None) -> PlanPolicy:
    return PLAN_POLICIES[resolve_plan(plan_name)]


def get_plan_credits(plan_name: str | PlanName | None) -> int | None:
    """Credits granted per billing period, ``None`` for unlimited."""
    return get_plan_policy(plan_name).credits


def get_plan_limits(plan_name: str | PlanName | None) -> PlanLimits:
    return get_plan_policy(plan_name).limits


def get_plan_from_price_id(price_id: str | None) -> PlanName:
    if not price_id:
        return PlanName.FREE
    return PRICE_TO_PLAN.get(price_id, PlanName.FREE)


def is_known_price(price_id: str | None) -> bool:
    return bool(price_id) and price_id in PRICE_TO_PLAN


def plan_has_feature(
    plan_name: str | PlanName | None, feature: PlanFeature, current_usage: int
) -> bool:
    """Whether one more unit of ``feature`` fits in the plan's limit."""
    limit = get_plan_limits(plan_name).limit_for(feature)
    if limit is None:
        return True
    return current_usage < limit


@dataclass(frozen=True)
class PlanCatalogEntry:
    name: PlanName
    credits: int | None
    limits: PlanLimits
    price_ids: tuple[str, ...]


def get_plan_catalog() -> list[PlanCatalogEntry]:
    """Every plan with the Stripe prices that map onto it."""
    catalog = []
    for plan_name, policy in PLAN_POLICIES.items():
        price_ids = tuple(
            price_id for price_id, plan in PRICE_TO_PLAN.items() if plan == plan_name
        )
        catalog.append(
            PlanCatalogEntry(
                name=plan_name,
                credits=policy.credits,
                limits=policy.limits,
                price_ids=price_ids,
            )
        )
    return catalog
