"""Persistence for subscription records.

Methods flush but never commit: the caller owns the unit of work, so a
webhook handler's mutations land in the same transaction as the ledger's
``processed`` flag.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import or_, select, update

from src.core.base import BaseService
from src.database.models import Subscription, SubscriptionStatus
from src.modules.billing.plans import FREE_PLAN_CREDITS, PlanName


class SubscriptionRepository(BaseService):
    async def find_by_user_id(self, user_id: UUID) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_customer_id(self, customer_id: str) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.stripe_customer_id == customer_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_subscription_id(
        self, subscription_id: str
    ) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.stripe_subscription_id == subscription_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self, limit: int = 100) -> list[Subscription]:
        stmt = (
            select(Subscription).order_by(Subscription.created_at.desc()).limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self, user_id: UUID, stripe_customer_id: str, **fields: Any
    ) -> Subscription:
        """Create the user's record, INACTIVE on the FREE plan unless told otherwise."""
        values: dict[str, Any] = {
            "status": SubscriptionStatus.INACTIVE,
            "plan_name": PlanName.FREE.value,
            "credits_total": FREE_PLAN_CREDITS,
            "credits_used": 0,
        }
        values.update(fields)

        subscription = Subscription(
            user_id=user_id, stripe_customer_id=stripe_customer_id, **values
        )
        self.db.add(subscription)
        await self.db.flush()

        self.logger.info(
            f"Created subscription record for user {user_id}",
            customer_id=stripe_customer_id,
            status=subscription.status.value,
        )
        return subscription

    async def apply(self, subscription: Subscription, **fields: Any) -> Subscription:
        """Field-level last-write-wins update."""
        if fields.get("stripe_subscription_id") and not (
            fields.get("stripe_customer_id") or subscription.stripe_customer_id
        ):
            raise ValueError("A Stripe customer must be linked before a subscription")

        for field, value in fields.items():
            setattr(subscription, field, value)
        await self.db.flush()
        return subscription

    async def delete(self, subscription: Subscription) -> None:
        await self.db.delete(subscription)
        await self.db.flush()

    async def has_active_subscription(self, user_id: UUID) -> bool:
        subscription = await self.find_by_user_id(user_id)
        return bool(subscription and subscription.is_entitled)

    async def consume_credits(self, user_id: UUID, amount: int = 1) -> bool:
        """Atomically spend ``amount`` credits.

        Returns False, leaving the record untouched, when the finite allocation
        would be exceeded or the user has no record.
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        stmt = (
            update(Subscription)
            .where(
                Subscription.user_id == user_id,
                or_(
                    Subscription.credits_total.is_(None),
                    Subscription.credits_used + amount <= Subscription.credits_total,
                ),
            )
            .values(credits_used=Subscription.credits_used + amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.flush()
        return result.rowcount == 1
