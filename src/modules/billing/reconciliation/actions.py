"""User-initiated subscription changes.

Every action needs a record linked to a Stripe subscription. A record that
has a customer but no subscription id is repaired from Stripe first, which
covers users whose ``customer.subscription.created`` webhook never arrived.
"""

from typing import Any
from uuid import UUID

from fastapi import status
from sqlalchemy.exc import SQLAlchemyError

from src.api.core.exceptions.base import LaunchpadException
from src.api.core.messages import MessageCode
from src.core.base import BaseService
from src.database.models import Subscription, SubscriptionStatus, User
from src.modules.billing.constants import MODIFIABLE_PROVIDER_STATUSES
from src.modules.billing.plans import (
    get_plan_credits,
    get_plan_from_price_id,
    is_known_price,
    resolve_plan,
)
from src.modules.billing.reconciliation.engine import ReconciliationEngine
from src.modules.billing.reconciliation.payloads import (
    extract_base_item,
    extract_period,
)
from src.modules.billing.stripe.gateway import BillingGatewayError, ResourceMissingError
from src.utils.time_helpers import ensure_utc


def _gateway_failure(error: BillingGatewayError) -> LaunchpadException:
    return LaunchpadException(
        message_code=MessageCode.EXTERNAL_SERVICE_ERROR,
        status_code=status.HTTP_502_BAD_GATEWAY,
        details={"description": str(error)},
    )


class SubscriptionActions(BaseService):
    def __init__(self, engine: ReconciliationEngine):
        super().__init__(engine.db)
        self.engine = engine
        self.gateway = engine.gateway
        self.subscriptions = engine.subscriptions

    async def get_subscription(self, user_id: UUID) -> Subscription | None:
        return await self.subscriptions.find_by_user_id(user_id)

    async def _require_record(self, user_id: UUID) -> Subscription:
        subscription = await self.subscriptions.find_by_user_id(user_id)
        if subscription is None:
            raise LaunchpadException(
                message_code=MessageCode.SUBSCRIPTION_NOT_FOUND,
                status_code=status.HTTP_404_NOT_FOUND,
                details={"user_id": str(user_id)},
            )
        return subscription

    async def _require_linked_subscription(self, user_id: UUID) -> Subscription:
        subscription = await self._require_record(user_id)
        if subscription.stripe_subscription_id:
            return subscription

        self.logger.info(
            f"No Stripe subscription linked for user {user_id}, syncing",
            customer_id=subscription.stripe_customer_id,
        )
        synced = await self.engine.sync_from_provider(
            subscription.stripe_customer_id, user_id
        )
        if synced is None or not synced.stripe_subscription_id:
            raise LaunchpadException(
                message_code=MessageCode.NO_ACTIVE_SUBSCRIPTION,
                status_code=status.HTTP_404_NOT_FOUND,
                details={
                    "description": "No Stripe subscription found for this customer. "
                    "Please contact support if you were charged.",
                    "customer_id": subscription.stripe_customer_id,
                },
            )
        return synced

    async def _retrieve_provider_subscription(
        self, subscription_id: str
    ) -> dict[str, Any]:
        try:
            return await self.gateway.retrieve_subscription(subscription_id)
        except ResourceMissingError:
            raise LaunchpadException(
                message_code=MessageCode.NO_ACTIVE_SUBSCRIPTION,
                status_code=status.HTTP_404_NOT_FOUND,
                details={
                    "description": f"Subscription {subscription_id} no longer exists in Stripe",
                },
            )
        except BillingGatewayError as e:
            raise _gateway_failure(e)

    async def switch_plan(self, user_id: UUID, new_price_id: str) -> Subscription:
        if not is_known_price(new_price_id):
            raise LaunchpadException(
                message_code=MessageCode.UNKNOWN_PRICE,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"price_id": new_price_id},
            )

        subscription = await self._require_linked_subscription(user_id)
        subscription_id = subscription.stripe_subscription_id
        provider_subscription = await self._retrieve_provider_subscription(
            subscription_id
        )

        provider_status = provider_subscription.get("status")
        if provider_status == "canceled":
            raise LaunchpadException(
                message_code=MessageCode.SUBSCRIPTION_CANCELED,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={
                    "description": "Cannot switch plan on a canceled subscription. "
                    "Please create a new subscription.",
                },
            )
        if provider_status not in MODIFIABLE_PROVIDER_STATUSES:
            raise LaunchpadException(
                message_code=MessageCode.SUBSCRIPTION_NOT_MODIFIABLE,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"status": provider_status},
            )

        item = extract_base_item(provider_subscription)
        if not item or not item.get("id"):
            raise LaunchpadException(
                message_code=MessageCode.INTERNAL_ERROR,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                details={
                    "description": "Stripe subscription has no line item to update",
                    "subscription_id": subscription_id,
                },
            )

        try:
            updated = await self.gateway.update_subscription_item(
                subscription_id, item["id"], new_price_id
            )
        except BillingGatewayError as e:
            raise _gateway_failure(e)

        self.logger.info(
            f"Switched subscription {subscription_id} to price {new_price_id}",
            user_id=str(user_id),
        )
        return await self._mirror_plan_switch(subscription, updated, new_price_id)

    async def _mirror_plan_switch(
        self,
        subscription: Subscription,
        provider_subscription: dict[str, Any],
        new_price_id: str,
    ) -> Subscription:
        """Write the switch locally; the following webhook confirms it.

        Stripe already holds the new price, so a local failure is logged and
        the record is left for the webhook to reconcile.
        """
        new_plan = get_plan_from_price_id(new_price_id)
        plan_changed = resolve_plan(subscription.plan_name) != new_plan
        period_start, period_end = extract_period(provider_subscription)

        fields: dict[str, Any] = {
            "status": SubscriptionStatus.ACTIVE,
            "plan_name": new_plan.value,
            "price_id": new_price_id,
            "cancel_at_period_end": False,
            "credits_total": get_plan_credits(new_plan),
        }
        if period_start is not None:
            fields["current_period_start"] = period_start
        if period_end is not None:
            fields["current_period_end"] = period_end
        if plan_changed:
            fields["credits_used"] = 0
            fields["credits_reset_at"] = period_end or ensure_utc(
                subscription.current_period_end
            )

        user_id = subscription.user_id
        try:
            await self.subscriptions.apply(subscription, **fields)
            await self.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            self.logger.warning(
                f"Failed to mirror plan switch locally for user {user_id}: {e}",
                price_id=new_price_id,
            )
            return await self._require_record(user_id)
        return subscription

    async def cancel_subscription(self, user_id: UUID) -> dict[str, Any]:
        """Schedule cancellation at period end. The record changes via webhook."""
        subscription = await self._require_linked_subscription(user_id)
        subscription_id = subscription.stripe_subscription_id

        provider_subscription = await self._retrieve_provider_subscription(
            subscription_id
        )
        if provider_subscription.get("status") == "canceled":
            raise LaunchpadException(
                message_code=MessageCode.SUBSCRIPTION_CANCELED,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"subscription_id": subscription_id},
            )

        try:
            updated = await self.gateway.set_cancel_at_period_end(subscription_id, True)
        except BillingGatewayError as e:
            raise _gateway_failure(e)

        self.logger.info(
            f"Scheduled cancellation of subscription {subscription_id}",
            user_id=str(user_id),
        )
        return updated

    async def cancel_subscription_immediately(self, user_id: UUID) -> Subscription:
        subscription = await self._require_linked_subscription(user_id)
        subscription_id = subscription.stripe_subscription_id

        try:
            await self.gateway.cancel_immediately(subscription_id)
        except ResourceMissingError:
            self.logger.warning(
                f"Subscription {subscription_id} already gone from Stripe, downgrading locally",
                user_id=str(user_id),
            )
        except BillingGatewayError as e:
            raise _gateway_failure(e)

        await self.engine.apply_free_downgrade(subscription)
        await self.commit()
        self.logger.info(
            f"Canceled subscription {subscription_id} immediately",
            user_id=str(user_id),
        )
        return subscription

    async def reactivate_subscription(self, user_id: UUID) -> dict[str, Any]:
        """Undo a scheduled cancellation before the period ends."""
        subscription = await self._require_linked_subscription(user_id)
        subscription_id = subscription.stripe_subscription_id

        provider_subscription = await self._retrieve_provider_subscription(
            subscription_id
        )
        provider_status = provider_subscription.get("status")

        if provider_status == "canceled":
            raise LaunchpadException(
                message_code=MessageCode.SUBSCRIPTION_CANCELED,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={
                    "description": "Cannot reactivate a canceled subscription. "
                    "Please create a new subscription.",
                },
            )
        if not provider_subscription.get("cancel_at_period_end"):
            if provider_status == "active":
                raise LaunchpadException(
                    message_code=MessageCode.SUBSCRIPTION_ALREADY_ACTIVE,
                    status_code=status.HTTP_400_BAD_REQUEST,
                    details={"subscription_id": subscription_id},
                )
            raise LaunchpadException(
                message_code=MessageCode.SUBSCRIPTION_NOT_MODIFIABLE,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"status": provider_status},
            )

        try:
            updated = await self.gateway.set_cancel_at_period_end(
                subscription_id, False
            )
        except BillingGatewayError as e:
            raise _gateway_failure(e)

        self.logger.info(
            f"Reactivated subscription {subscription_id}", user_id=str(user_id)
        )
        return updated

    async def get_or_create_customer(self, user: User) -> Subscription:
        """Return the user's record, creating the Stripe customer on first use."""
        subscription = await self.subscriptions.find_by_user_id(user.id)
        if subscription is not None:
            return subscription

        try:
            customer_id = await self.gateway.create_customer(
                user.email, user.name, user.id
            )
        except BillingGatewayError as e:
            raise _gateway_failure(e)

        subscription = await self.subscriptions.create(user.id, customer_id)
        await self.commit()
        return subscription

    async def create_checkout_session(
        self, user: User, price_id: str, success_url: str, cancel_url: str
    ) -> dict[str, Any]:
        if not is_known_price(price_id):
            raise LaunchpadException(
                message_code=MessageCode.UNKNOWN_PRICE,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"price_id": price_id},
            )

        subscription = await self.get_or_create_customer(user)
        if subscription.stripe_subscription_id and subscription.is_entitled:
            raise LaunchpadException(
                message_code=MessageCode.SUBSCRIPTION_ALREADY_ACTIVE,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"description": "Use switch-plan to change an active plan"},
            )

        try:
            session = await self.gateway.create_checkout_session(
                customer_id=subscription.stripe_customer_id,
                price_id=price_id,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"user_id": str(user.id), "price_id": price_id},
            )
        except BillingGatewayError as e:
            raise _gateway_failure(e)

        self.logger.info(
            f"Created checkout session {session.get('id')} for user {user.id}",
            price_id=price_id,
        )
        return session

    async def create_portal_session(self, user: User, return_url: str) -> str:
        subscription = await self._require_record(user.id)
        try:
            return await self.gateway.create_portal_session(
                subscription.stripe_customer_id, return_url
            )
        except BillingGatewayError as e:
            raise _gateway_failure(e)

    async def complete_checkout(self, user: User, session_id: str) -> Subscription:
        """Link the subscription of a paid checkout without waiting for webhooks."""
        try:
            session = await self.gateway.retrieve_checkout_session(session_id)
        except ResourceMissingError:
            raise LaunchpadException(
                message_code=MessageCode.NOT_FOUND,
                status_code=status.HTTP_404_NOT_FOUND,
                details={"session_id": session_id},
            )
        except BillingGatewayError as e:
            raise _gateway_failure(e)

        metadata_user_id = (session.get("metadata") or {}).get("user_id")
        if metadata_user_id and metadata_user_id != str(user.id):
            raise LaunchpadException(
                message_code=MessageCode.FORBIDDEN,
                status_code=status.HTTP_403_FORBIDDEN,
                details={"session_id": session_id},
            )

        if session.get("payment_status") != "paid" or not session.get("subscription"):
            raise LaunchpadException(
                message_code=MessageCode.CHECKOUT_NOT_COMPLETED,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={
                    "session_id": session_id,
                    "payment_status": session.get("payment_status"),
                },
            )

        customer_id = session.get("customer")
        if isinstance(customer_id, dict):
            customer_id = customer_id.get("id")

        subscription = await self.subscriptions.find_by_user_id(user.id)
        if subscription is None:
            subscription = await self.subscriptions.create(user.id, customer_id)
            await self.commit()

        synced = await self.engine.sync_from_provider(
            customer_id or subscription.stripe_customer_id, user.id
        )
        return synced or subscription

    async def sync_subscription(self, user_id: UUID) -> Subscription:
        subscription = await self._require_record(user_id)
        synced = await self.engine.sync_from_provider(
            subscription.stripe_customer_id, user_id
        )
        return synced or subscription

    async def describe_subscription(self, user_id: UUID) -> dict[str, Any]:
        """Local record next to what Stripe reports, for debugging."""
        subscription = await self._require_record(user_id)

        provider_subscription = None
        provider_error = None
        if subscription.stripe_subscription_id:
            try:
                provider_subscription = await self.gateway.retrieve_subscription(
                    subscription.stripe_subscription_id
                )
            except BillingGatewayError as e:
                provider_error = str(e)

        in_sync = provider_subscription is not None and (
            SubscriptionStatus.from_provider(provider_subscription.get("status"))
            == subscription.status
        )
        return {
            "subscription": subscription,
            "provider_subscription": provider_subscription,
            "provider_error": provider_error,
            "in_sync": in_sync,
        }

    async def reset_subscription(self, user_id: UUID) -> bool:
        """Delete the user's record, canceling its Stripe subscription first."""
        subscription = await self.subscriptions.find_by_user_id(user_id)
        if subscription is None:
            return False

        if subscription.stripe_subscription_id:
            try:
                await self.gateway.cancel_immediately(
                    subscription.stripe_subscription_id
                )
            except BillingGatewayError as e:
                self.logger.warning(
                    f"Could not cancel Stripe subscription while resetting user {user_id}: {e}",
                    subscription_id=subscription.stripe_subscription_id,
                )

        await self.subscriptions.delete(subscription)
        await self.commit()
        self.logger.warning(f"Reset subscription record of user {user_id}")
        return True
