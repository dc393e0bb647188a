"""Reconciles local subscription records with Stripe.

Webhook events go through the ledger first so that every Stripe event id is
applied at most once. A handler's record mutations and the ledger's
``processed`` flag are committed together; when a handler raises, both are
rolled back, the error is written to the ledger and the exception propagates
so that Stripe redelivers the event.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.core.exceptions.base import LaunchpadException
from src.api.core.messages import MessageCode
from src.core.base import BaseService
from src.database.models import Subscription, SubscriptionStatus
from src.emails import TemplateType
from src.modules.billing.constants import (
    SUBSCRIPTION_LIST_LIMIT,
    SYNCABLE_PROVIDER_STATUSES,
    StripeEventType,
)
from src.modules.billing.notifications import BillingNotification, BillingNotifier
from src.modules.billing.plans import (
    PlanName,
    get_plan_credits,
    get_plan_from_price_id,
    resolve_plan,
)
from src.modules.billing.reconciliation.payloads import (
    extract_invoice_subscription_id,
    extract_period,
    extract_price_id,
)
from src.modules.billing.stripe.gateway import BillingGateway, BillingGatewayError
from src.modules.billing.subscriptions.repository import SubscriptionRepository
from src.modules.billing.webhooks.ledger import (
    DuplicateWebhookEventError,
    WebhookEventLedger,
)
from src.modules.user.management import UserManagementService
from src.utils.time_helpers import ensure_utc, utc_now

WebhookHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    processed: bool
    duplicate: bool = False


class ReconciliationEngine(BaseService):
    def __init__(
        self,
        db: AsyncSession,
        gateway: BillingGateway,
        notifier: BillingNotifier | None = None,
    ):
        super().__init__(db)
        self.gateway = gateway
        self.notifier = notifier
        self.subscriptions = SubscriptionRepository(db)
        self.ledger = WebhookEventLedger(db)
        self.users = UserManagementService(db)
        self._pending_notifications: list[
            tuple[UUID, TemplateType, dict[str, Any]]
        ] = []
        self._handlers: dict[str, WebhookHandler] = {
            StripeEventType.SUBSCRIPTION_CREATED.value: self._handle_subscription_created,
            StripeEventType.SUBSCRIPTION_UPDATED.value: self._handle_subscription_updated,
            StripeEventType.SUBSCRIPTION_DELETED.value: self._handle_subscription_deleted,
            StripeEventType.INVOICE_CREATED.value: self._handle_invoice_created,
            StripeEventType.INVOICE_PAYMENT_SUCCEEDED.value: self._handle_payment_succeeded,
            StripeEventType.INVOICE_PAYMENT_FAILED.value: self._handle_payment_failed,
        }

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    async def process_event(self, event: dict[str, Any]) -> WebhookOutcome:
        """Apply a verified Stripe event at most once.

        A redelivery of an event whose previous attempt failed is claimed and
        retried; any other redelivery is reported as a duplicate.
        """
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise LaunchpadException(
                message_code=MessageCode.WEBHOOK_PAYLOAD_INVALID,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"description": "Webhook event is missing its id or type"},
            )

        entry = await self.ledger.find(event_id)
        if entry is not None:
            if entry.processed or not await self.ledger.claim_failed(event_id):
                self.logger.info(
                    f"Webhook event {event_id} already handled, skipping",
                    event_type=event_type,
                )
                return WebhookOutcome(
                    event_id, event_type, processed=entry.processed, duplicate=True
                )
            self.logger.info(
                f"Retrying previously failed webhook event {event_id}",
                event_type=event_type,
            )
        else:
            try:
                await self.ledger.record(event_id, event_type, event)
            except DuplicateWebhookEventError:
                self.logger.info(
                    f"Webhook event {event_id} recorded by a concurrent delivery",
                    event_type=event_type,
                )
                return WebhookOutcome(
                    event_id, event_type, processed=False, duplicate=True
                )

        return await self._dispatch(event_id, event_type, event)

    async def reprocess_event(self, event_id: str) -> WebhookOutcome:
        """Re-run the handler for a stored, unprocessed event."""
        entry = await self.ledger.find(event_id)
        if entry is None:
            raise LaunchpadException(
                message_code=MessageCode.WEBHOOK_EVENT_NOT_FOUND,
                status_code=status.HTTP_404_NOT_FOUND,
                details={"event_id": event_id},
            )
        if entry.processed:
            raise LaunchpadException(
                message_code=MessageCode.WEBHOOK_EVENT_ALREADY_PROCESSED,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"event_id": event_id},
            )
        if not self.handles(entry.event_type):
            raise LaunchpadException(
                message_code=MessageCode.WEBHOOK_EVENT_UNHANDLED,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"event_id": event_id, "event_type": entry.event_type},
            )

        self.logger.info(
            f"Reprocessing webhook event {event_id}", event_type=entry.event_type
        )
        return await self._dispatch(entry.stripe_event_id, entry.event_type, entry.data)

    async def _dispatch(
        self, event_id: str, event_type: str, event: dict[str, Any]
    ) -> WebhookOutcome:
        handler = self._handlers.get(event_type)
        if handler is None:
            self.logger.info(
                f"No handler for webhook event type {event_type}", event_id=event_id
            )
            return WebhookOutcome(event_id, event_type, processed=False)

        data = (event.get("data") or {}).get("object") or {}
        try:
            await handler(data)
            await self.ledger.mark_processed(event_id)
            await self.commit()
        except Exception as e:
            await self.db.rollback()
            self._pending_notifications.clear()
            self.logger.error(
                f"Webhook handler for {event_type} failed: {e}",
                event_id=event_id,
                error_type=type(e).__name__,
            )
            await self.ledger.record_failure(event_id, f"{type(e).__name__}: {e}")
            raise

        self.logger.info(f"Processed webhook event {event_type}", event_id=event_id)
        await self._flush_notifications()
        return WebhookOutcome(event_id, event_type, processed=True)

    async def _handle_subscription_created(self, data: dict[str, Any]) -> None:
        customer_id = data.get("customer")
        subscription_id = data.get("id")
        price_id = extract_price_id(data)
        if not customer_id or not subscription_id or not price_id:
            raise LaunchpadException(
                message_code=MessageCode.WEBHOOK_PAYLOAD_INVALID,
                status_code=status.HTTP_400_BAD_REQUEST,
                details={
                    "description": "Subscription is missing its customer, id or price",
                    "subscription_id": subscription_id,
                },
            )

        subscription = await self.subscriptions.find_by_customer_id(customer_id)
        if subscription is None:
            subscription = await self.subscriptions.find_by_subscription_id(
                subscription_id
            )
        if subscription is None:
            subscription = await self._link_customer(customer_id, data)

        plan = get_plan_from_price_id(price_id)
        credits_total = get_plan_credits(plan)
        period_start, period_end = extract_period(data)

        await self.subscriptions.apply(
            subscription,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
            status=SubscriptionStatus.ACTIVE,
            plan_name=plan.value,
            price_id=price_id,
            cancel_at_period_end=bool(data.get("cancel_at_period_end")),
            current_period_start=period_start,
            current_period_end=period_end,
            credits_total=credits_total,
            credits_used=0,
            credits_reset_at=period_end,
        )

        self.logger.info(
            f"Activated {plan.value} subscription for user {subscription.user_id}",
            subscription_id=subscription_id,
            customer_id=customer_id,
        )
        self._queue_notification(
            subscription.user_id,
            "subscription_activated",
            {
                "plan_name": plan.value,
                "credits_total": credits_total,
                "period_end": _format_date(period_end),
            },
        )

    async def _link_customer(
        self, customer_id: str, subscription_data: dict[str, Any]
    ) -> Subscription:
        """Find the user behind an unknown Stripe customer and link them."""
        user = None

        metadata_user_id = (subscription_data.get("metadata") or {}).get("user_id")
        if metadata_user_id:
            try:
                user = await self.users.get_user_by_id(UUID(metadata_user_id))
            except ValueError:
                self.logger.warning(
                    f"Ignoring malformed user_id metadata on customer {customer_id}",
                    user_id=metadata_user_id,
                )

        if user is None:
            customer = await self.gateway.retrieve_customer(customer_id)
            email = None if customer.get("deleted") else customer.get("email")
            if email:
                user = await self.users.get_user_by_email(email)

        if user is None:
            raise LaunchpadException(
                message_code=MessageCode.CUSTOMER_LINKAGE_UNRESOLVED,
                status_code=status.HTTP_404_NOT_FOUND,
                details={
                    "description": "No user matches this Stripe customer",
                    "customer_id": customer_id,
                },
            )

        existing = await self.subscriptions.find_by_user_id(user.id)
        if existing is not None:
            self.logger.warning(
                f"Relinking user {user.id} to Stripe customer {customer_id}",
                previous_customer_id=existing.stripe_customer_id,
            )
            return await self.subscriptions.apply(
                existing, stripe_customer_id=customer_id
            )

        self.logger.info(f"Linking user {user.id} to Stripe customer {customer_id}")
        return await self.subscriptions.create(user.id, customer_id)

    async def _handle_subscription_updated(self, data: dict[str, Any]) -> None:
        subscription_id = data.get("id")
        customer_id = data.get("customer")

        subscription = None
        if subscription_id:
            subscription = await self.subscriptions.find_by_subscription_id(
                subscription_id
            )
        linked_by_subscription = subscription is not None
        if subscription is None and customer_id:
            subscription = await self.subscriptions.find_by_customer_id(customer_id)

        if subscription is None:
            self.logger.warning(
                "No local record for updated Stripe subscription",
                subscription_id=subscription_id,
                customer_id=customer_id,
            )
            return

        price_id = extract_price_id(data) or subscription.price_id
        new_plan = (
            get_plan_from_price_id(price_id)
            if price_id
            else resolve_plan(subscription.plan_name)
        )
        previous_plan = resolve_plan(subscription.plan_name)
        previous_status = subscription.status
        new_status = SubscriptionStatus.from_provider(data.get("status"))

        period_start, period_end = extract_period(data)
        previous_start = ensure_utc(subscription.current_period_start)
        renewed = period_start is not None and (
            previous_start is None or period_start > previous_start
        )
        plan_changed = new_plan != previous_plan
        reset_credits = renewed or plan_changed or not linked_by_subscription

        fields: dict[str, Any] = {
            "stripe_subscription_id": subscription_id,
            "status": new_status,
            "plan_name": new_plan.value,
            "price_id": price_id,
            "cancel_at_period_end": bool(data.get("cancel_at_period_end")),
            "credits_total": get_plan_credits(new_plan),
        }
        if period_start is not None:
            fields["current_period_start"] = period_start
        if period_end is not None:
            fields["current_period_end"] = period_end
        if reset_credits:
            fields["credits_used"] = 0
            fields["credits_reset_at"] = period_end or subscription.current_period_end

        await self.subscriptions.apply(subscription, **fields)

        self.logger.info(
            f"Updated subscription for user {subscription.user_id}",
            subscription_id=subscription_id,
            status=new_status.value,
            plan_name=new_plan.value,
            plan_changed=plan_changed,
            credits_reset=reset_credits,
        )

        if plan_changed or reset_credits or new_status != previous_status:
            self._queue_notification(
                subscription.user_id,
                "subscription_updated",
                {
                    "plan_name": new_plan.value,
                    "status": new_status.value,
                    "credits_reset": reset_credits,
                },
            )

    async def _handle_subscription_deleted(self, data: dict[str, Any]) -> None:
        subscription_id = data.get("id")
        subscription = (
            await self.subscriptions.find_by_subscription_id(subscription_id)
            if subscription_id
            else None
        )
        if subscription is None:
            self.logger.warning(
                "No local record for deleted Stripe subscription",
                subscription_id=subscription_id,
            )
            return

        await self.apply_free_downgrade(subscription)
        self._queue_notification(
            subscription.user_id,
            "subscription_canceled",
            {"credits_total": subscription.credits_total},
        )

    async def _handle_invoice_created(self, data: dict[str, Any]) -> None:
        # Usage reporting hooks in here once metered prices exist.
        self.logger.debug(
            "Invoice created",
            invoice_id=data.get("id"),
            subscription_id=extract_invoice_subscription_id(data),
        )

    async def _handle_payment_succeeded(self, data: dict[str, Any]) -> None:
        subscription = await self._find_invoice_subscription(data)
        if subscription is None:
            return

        await self.subscriptions.apply(subscription, status=SubscriptionStatus.ACTIVE)
        self.logger.info(
            f"Payment succeeded for user {subscription.user_id}",
            invoice_id=data.get("id"),
        )

        amount_paid = data.get("amount_paid")
        if amount_paid:
            self._queue_notification(
                subscription.user_id,
                "payment_succeeded",
                {
                    "amount": f"{amount_paid / 100:.2f}",
                    "currency": (data.get("currency") or "usd").upper(),
                    "invoice_url": data.get("hosted_invoice_url") or "",
                },
            )

    async def _handle_payment_failed(self, data: dict[str, Any]) -> None:
        subscription = await self._find_invoice_subscription(data)
        if subscription is None:
            return

        await self.subscriptions.apply(
            subscription, status=SubscriptionStatus.PAST_DUE
        )
        self.logger.warning(
            f"Payment failed for user {subscription.user_id}",
            invoice_id=data.get("id"),
            attempt_count=data.get("attempt_count"),
        )

    async def _find_invoice_subscription(
        self, invoice_data: dict[str, Any]
    ) -> Subscription | None:
        subscription_id = extract_invoice_subscription_id(invoice_data)
        if not subscription_id:
            self.logger.info(
                "Invoice is not tied to a subscription",
                invoice_id=invoice_data.get("id"),
            )
            return None

        subscription = await self.subscriptions.find_by_subscription_id(
            subscription_id
        )
        if subscription is None:
            self.logger.warning(
                "No local record for invoiced Stripe subscription",
                subscription_id=subscription_id,
                invoice_id=invoice_data.get("id"),
            )
        return subscription

    async def apply_free_downgrade(self, subscription: Subscription) -> Subscription:
        """Unlink the Stripe subscription and fall back to the FREE plan.

        The customer link survives. The period ends now and usage starts over
        against the FREE allocation.
        """
        await self.subscriptions.apply(
            subscription,
            stripe_subscription_id=None,
            status=SubscriptionStatus.CANCELED,
            plan_name=PlanName.FREE.value,
            price_id=None,
            cancel_at_period_end=False,
            current_period_end=utc_now(),
            credits_total=get_plan_credits(PlanName.FREE),
            credits_used=0,
            credits_reset_at=None,
        )
        self.logger.info(
            f"Downgraded user {subscription.user_id} to the FREE plan",
            customer_id=subscription.stripe_customer_id,
        )
        return subscription

    async def sync_from_provider(
        self, customer_id: str, user_id: UUID
    ) -> Subscription | None:
        """Repair the record's linkage from the customer's Stripe subscriptions.

        Gateway failures are logged and leave the record as it was.
        """
        subscription = await self.subscriptions.find_by_user_id(user_id)
        if subscription is None:
            self.logger.warning(
                f"No subscription record to sync for user {user_id}",
                customer_id=customer_id,
            )
            return None

        try:
            provider_subscriptions = await self.gateway.list_subscriptions_for_customer(
                customer_id, status="all", limit=SUBSCRIPTION_LIST_LIMIT
            )
        except BillingGatewayError as e:
            self.logger.error(
                f"Failed to list Stripe subscriptions for customer {customer_id}: {e}",
                user_id=str(user_id),
            )
            return subscription

        candidate = next(
            (
                item
                for item in provider_subscriptions
                if item.get("status") in SYNCABLE_PROVIDER_STATUSES
            ),
            None,
        )

        if candidate is not None:
            price_id = extract_price_id(candidate) or subscription.price_id
            plan = (
                get_plan_from_price_id(price_id)
                if price_id
                else resolve_plan(subscription.plan_name)
            )
            period_start, period_end = extract_period(candidate)
            await self.subscriptions.apply(
                subscription,
                stripe_customer_id=customer_id,
                stripe_subscription_id=candidate["id"],
                status=SubscriptionStatus.from_provider(candidate.get("status")),
                plan_name=plan.value,
                price_id=price_id,
                cancel_at_period_end=bool(candidate.get("cancel_at_period_end")),
                current_period_start=period_start,
                current_period_end=period_end,
                credits_total=get_plan_credits(plan),
            )
            await self.commit()
            self.logger.info(
                f"Synced subscription {candidate['id']} for user {user_id}",
                status=candidate.get("status"),
                plan_name=plan.value,
            )
        elif provider_subscriptions and provider_subscriptions[0].get("status") == "canceled":
            latest = provider_subscriptions[0]
            await self.subscriptions.apply(
                subscription,
                stripe_subscription_id=latest["id"],
                status=SubscriptionStatus.CANCELED,
            )
            await self.commit()
            self.logger.info(
                f"Linked canceled subscription {latest['id']} for user {user_id}"
            )
        else:
            self.logger.info(
                f"No Stripe subscription to sync for user {user_id}",
                customer_id=customer_id,
            )

        return subscription

    def _queue_notification(
        self, user_id: UUID, template_name: TemplateType, context: dict[str, Any]
    ) -> None:
        self._pending_notifications.append((user_id, template_name, context))

    async def _flush_notifications(self) -> None:
        pending, self._pending_notifications = self._pending_notifications, []
        if self.notifier is None or not self.notifier.enabled:
            return

        for user_id, template_name, context in pending:
            user = await self.users.get_user_by_id(user_id)
            if user is None:
                continue
            self.notifier.send(
                BillingNotification(
                    to_email=user.email,
                    template_name=template_name,
                    locale=user.locale,
                    context=context,
                )
            )


def _format_date(value: datetime | None) -> str | None:
    return value.strftime("%Y-%m-%d") if value else None
