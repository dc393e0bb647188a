"""Webhook reconciliation tests: idempotence, linkage and the credit laws."""

from datetime import datetime, timezone

import pytest

from src.api.core.exceptions.base import LaunchpadException
from src.api.core.messages import MessageCode
from src.database.models import SubscriptionStatus
from src.modules.billing.reconciliation.engine import ReconciliationEngine
from src.utils.time_helpers import ensure_utc, from_unix_timestamp
from tests.unit.modules.billing.fixtures_stripe_webhooks import (
    NEXT_PERIOD_END,
    PERIOD_END,
    PERIOD_START,
    build_event,
    build_invoice_object,
    build_subscription_object,
)
from tests.utils.assertions import assert_launchpad_exception


def as_utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class RecordingNotifier:
    enabled = True

    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)


@pytest.fixture
async def customer_only_subscription(db_session, subscription_factory, test_user):
    """Record created at checkout, before any subscription webhook."""
    return await subscription_factory.create_async(
        db_session,
        commit=True,
        user_id=test_user.id,
        stripe_customer_id="cus_test_123",
    )


@pytest.fixture
async def linked_subscription(db_session, subscription_factory, test_user):
    """PRO record in the period the webhook fixtures describe, 150 credits spent."""
    return await subscription_factory.create_async(
        db_session,
        commit=True,
        active=True,
        user_id=test_user.id,
        stripe_customer_id="cus_test_123",
        stripe_subscription_id="sub_test_123",
        current_period_start=from_unix_timestamp(PERIOD_START),
        current_period_end=from_unix_timestamp(PERIOD_END),
        credits_used=150,
        credits_reset_at=from_unix_timestamp(PERIOD_START),
    )


class TestWebhookIdempotence:
    @pytest.mark.asyncio
    async def test_event_applied_once(
        self, engine: ReconciliationEngine, customer_only_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.created",
            build_subscription_object(),
            event_id="evt_created_1",
        )

        outcome = await engine.process_event(event)
        assert outcome.processed is True
        assert outcome.duplicate is False

        # Credits spent after activation must survive a redelivery
        await engine.subscriptions.consume_credits(test_user.id, 7)
        await engine.commit()

        redelivered = await engine.process_event(event)
        assert redelivered.duplicate is True
        assert redelivered.processed is True

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.credits_used == 7
        entry = await engine.ledger.find("evt_created_1")
        assert entry.processed is True

    @pytest.mark.asyncio
    async def test_missing_event_id_is_rejected(self, engine: ReconciliationEngine):
        with pytest.raises(LaunchpadException) as exc_info:
            await engine.process_event({"type": "invoice.created", "data": {}})

        assert_launchpad_exception(
            exc_info.value, MessageCode.WEBHOOK_PAYLOAD_INVALID, 400
        )

    @pytest.mark.asyncio
    async def test_unhandled_type_is_recorded_but_not_processed(
        self, engine: ReconciliationEngine
    ):
        event = build_event("customer.created", {"id": "cus_1"}, event_id="evt_other")

        outcome = await engine.process_event(event)
        assert outcome.processed is False
        assert outcome.duplicate is False

        entry = await engine.ledger.find("evt_other")
        assert entry is not None
        assert entry.processed is False

        redelivered = await engine.process_event(event)
        assert redelivered.duplicate is True
        assert redelivered.processed is False

    @pytest.mark.asyncio
    async def test_failed_event_is_retried_on_redelivery(
        self, engine: ReconciliationEngine, fake_gateway, db_session, user_factory
    ):
        fake_gateway.add_customer("cus_late", "late.user@example.com")
        event = build_event(
            "customer.subscription.created",
            build_subscription_object(
                subscription_id="sub_late", customer_id="cus_late"
            ),
            event_id="evt_late",
        )

        with pytest.raises(LaunchpadException) as exc_info:
            await engine.process_event(event)
        assert_launchpad_exception(
            exc_info.value, MessageCode.CUSTOMER_LINKAGE_UNRESOLVED, 404
        )

        entry = await engine.ledger.find("evt_late")
        assert entry.processed is False
        assert entry.error_message.startswith("LaunchpadException")

        user = await user_factory.create_async(
            db_session, commit=True, email="late.user@example.com"
        )
        user_id = user.id

        outcome = await engine.process_event(event)
        assert outcome.processed is True
        assert outcome.duplicate is False

        subscription = await engine.subscriptions.find_by_user_id(user_id)
        assert subscription.stripe_customer_id == "cus_late"
        assert subscription.stripe_subscription_id == "sub_late"
        assert subscription.status == SubscriptionStatus.ACTIVE
        entry = await engine.ledger.find("evt_late")
        assert entry.processed is True
        assert entry.error_message is None

    @pytest.mark.asyncio
    async def test_failed_handler_leaves_no_partial_writes(
        self, engine: ReconciliationEngine, customer_only_subscription, test_user
    ):
        user_id = test_user.id

        async def explode(data):
            await engine.subscriptions.apply(
                await engine.subscriptions.find_by_user_id(user_id),
                status=SubscriptionStatus.ACTIVE,
                credits_used=99,
            )
            raise RuntimeError("handler crashed")

        engine._handlers["customer.subscription.created"] = explode
        event = build_event(
            "customer.subscription.created",
            build_subscription_object(),
            event_id="evt_crash",
        )

        with pytest.raises(RuntimeError):
            await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(user_id)
        assert subscription.status == SubscriptionStatus.INACTIVE
        assert subscription.credits_used == 0
        entry = await engine.ledger.find("evt_crash")
        assert entry.processed is False
        assert entry.error_message == "RuntimeError: handler crashed"


class TestSubscriptionCreated:
    @pytest.mark.asyncio
    async def test_activates_existing_customer_record(
        self, engine: ReconciliationEngine, customer_only_subscription, test_user
    ):
        event = build_event("customer.subscription.created", build_subscription_object())

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.stripe_subscription_id == "sub_test_123"
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.plan_name == "PRO"
        assert subscription.price_id == "price_pro_monthly"
        assert subscription.credits_total == 2000
        assert subscription.credits_used == 0
        assert ensure_utc(subscription.current_period_start) == as_utc(PERIOD_START)
        assert ensure_utc(subscription.current_period_end) == as_utc(PERIOD_END)
        assert ensure_utc(subscription.credits_reset_at) == as_utc(PERIOD_END)

    @pytest.mark.asyncio
    async def test_links_customer_from_metadata(
        self, engine: ReconciliationEngine, test_user
    ):
        event = build_event(
            "customer.subscription.created",
            build_subscription_object(
                customer_id="cus_meta",
                price_id="price_startup_yearly",
                metadata={"user_id": str(test_user.id)},
            ),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.stripe_customer_id == "cus_meta"
        assert subscription.plan_name == "STARTUP"
        assert subscription.credits_total == 500

    @pytest.mark.asyncio
    async def test_links_customer_by_email_ignoring_case(
        self, engine: ReconciliationEngine, fake_gateway, test_user
    ):
        fake_gateway.add_customer("cus_by_email", test_user.email.upper())
        event = build_event(
            "customer.subscription.created",
            build_subscription_object(customer_id="cus_by_email"),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.stripe_customer_id == "cus_by_email"
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert fake_gateway.calls_to("retrieve_customer") == [("cus_by_email",)]

    @pytest.mark.asyncio
    async def test_relinks_user_with_stale_customer(
        self,
        engine: ReconciliationEngine,
        fake_gateway,
        db_session,
        subscription_factory,
        test_user,
    ):
        await subscription_factory.create_async(
            db_session,
            commit=True,
            user_id=test_user.id,
            stripe_customer_id="cus_old",
            credits_used=4,
        )
        fake_gateway.add_customer("cus_new", test_user.email)

        await engine.process_event(
            build_event(
                "customer.subscription.created",
                build_subscription_object(customer_id="cus_new"),
            )
        )

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.stripe_customer_id == "cus_new"
        assert subscription.credits_used == 0
        assert await engine.subscriptions.find_by_customer_id("cus_old") is None

    @pytest.mark.asyncio
    async def test_deleted_customer_does_not_link(
        self, engine: ReconciliationEngine, fake_gateway, test_user
    ):
        fake_gateway.add_customer("cus_gone", test_user.email, deleted=True)
        event = build_event(
            "customer.subscription.created",
            build_subscription_object(customer_id="cus_gone"),
        )

        with pytest.raises(LaunchpadException) as exc_info:
            await engine.process_event(event)

        assert_launchpad_exception(
            exc_info.value, MessageCode.CUSTOMER_LINKAGE_UNRESOLVED
        )

    @pytest.mark.asyncio
    async def test_unknown_price_activates_free(
        self, engine: ReconciliationEngine, customer_only_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.created",
            build_subscription_object(price_id="price_legacy_unknown"),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.plan_name == "FREE"
        assert subscription.credits_total == 10
        assert subscription.price_id == "price_legacy_unknown"

    @pytest.mark.asyncio
    async def test_enterprise_is_unlimited(
        self, engine: ReconciliationEngine, customer_only_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.created",
            build_subscription_object(price_id="price_enterprise_monthly"),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.plan_name == "ENTERPRISE"
        assert subscription.credits_total is None
        assert subscription.credits_remaining is None

    @pytest.mark.asyncio
    async def test_missing_price_fails_event(
        self, engine: ReconciliationEngine, customer_only_subscription
    ):
        data = build_subscription_object()
        data["items"]["data"] = []

        with pytest.raises(LaunchpadException) as exc_info:
            await engine.process_event(
                build_event("customer.subscription.created", data, event_id="evt_np")
            )

        assert_launchpad_exception(
            exc_info.value, MessageCode.WEBHOOK_PAYLOAD_INVALID, 400
        )
        entry = await engine.ledger.find("evt_np")
        assert entry.processed is False
        assert entry.error_message


class TestSubscriptionUpdated:
    @pytest.mark.asyncio
    async def test_same_period_keeps_usage(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.updated",
            build_subscription_object(status="past_due", cancel_at_period_end=True),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.status == SubscriptionStatus.PAST_DUE
        assert subscription.cancel_at_period_end is True
        assert subscription.credits_used == 150
        assert subscription.credits_total == 2000

    @pytest.mark.asyncio
    async def test_renewal_resets_usage(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.updated",
            build_subscription_object(
                period_start=PERIOD_END, period_end=NEXT_PERIOD_END
            ),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.credits_used == 0
        assert ensure_utc(subscription.current_period_start) == as_utc(PERIOD_END)
        assert ensure_utc(subscription.current_period_end) == as_utc(NEXT_PERIOD_END)
        assert ensure_utc(subscription.credits_reset_at) == as_utc(NEXT_PERIOD_END)

    @pytest.mark.asyncio
    async def test_plan_change_resets_usage_and_allocation(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.updated",
            build_subscription_object(price_id="price_startup_monthly"),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.plan_name == "STARTUP"
        assert subscription.price_id == "price_startup_monthly"
        assert subscription.credits_total == 500
        assert subscription.credits_used == 0

    @pytest.mark.asyncio
    async def test_period_read_from_items(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.updated",
            build_subscription_object(
                period_start=PERIOD_END,
                period_end=NEXT_PERIOD_END,
                period_on_items=True,
            ),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert ensure_utc(subscription.current_period_end) == as_utc(NEXT_PERIOD_END)
        assert subscription.credits_used == 0

    @pytest.mark.asyncio
    async def test_missing_period_keeps_stored_period(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.updated",
            build_subscription_object(period_start=None, period_end=None),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert ensure_utc(subscription.current_period_start) == as_utc(PERIOD_START)
        assert ensure_utc(subscription.current_period_end) == as_utc(PERIOD_END)
        assert subscription.credits_used == 150

    @pytest.mark.asyncio
    async def test_links_subscription_found_by_customer(
        self, engine: ReconciliationEngine, customer_only_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.updated",
            build_subscription_object(subscription_id="sub_missed_created"),
        )

        await engine.process_event(event)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.stripe_subscription_id == "sub_missed_created"
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.plan_name == "PRO"
        assert subscription.credits_used == 0

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_ignored(
        self, engine: ReconciliationEngine
    ):
        event = build_event(
            "customer.subscription.updated",
            build_subscription_object(
                subscription_id="sub_nobody", customer_id="cus_nobody"
            ),
        )

        outcome = await engine.process_event(event)

        assert outcome.processed is True
        assert await engine.subscriptions.find_by_customer_id("cus_nobody") is None


class TestSubscriptionDeleted:
    @pytest.mark.asyncio
    async def test_downgrades_to_free(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.deleted",
            build_subscription_object(status="canceled"),
        )

        await engine.process_event(event)
        downgraded_at = datetime.now(timezone.utc)

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.plan_name == "FREE"
        assert subscription.stripe_subscription_id is None
        assert subscription.stripe_customer_id == "cus_test_123"
        assert subscription.price_id is None
        assert ensure_utc(subscription.current_period_start) == as_utc(PERIOD_START)
        assert abs(
            (ensure_utc(subscription.current_period_end) - downgraded_at).total_seconds()
        ) < 60
        assert subscription.credits_total == 10
        assert subscription.credits_used == 0
        assert subscription.credits_reset_at is None
        assert subscription.credits_remaining == 10
        assert subscription.is_entitled is False

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_ignored(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        event = build_event(
            "customer.subscription.deleted",
            build_subscription_object(subscription_id="sub_other", status="canceled"),
        )

        outcome = await engine.process_event(event)

        assert outcome.processed is True
        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.status == SubscriptionStatus.ACTIVE


class TestInvoiceEvents:
    @pytest.mark.asyncio
    async def test_payment_failed_marks_past_due(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        await engine.process_event(
            build_event("invoice.payment_failed", build_invoice_object())
        )

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.status == SubscriptionStatus.PAST_DUE
        assert subscription.is_entitled is False

    @pytest.mark.asyncio
    async def test_payment_succeeded_restores_active(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        await engine.process_event(
            build_event("invoice.payment_failed", build_invoice_object())
        )
        await engine.process_event(
            build_event(
                "invoice.payment_succeeded",
                build_invoice_object(nested_subscription=True),
            )
        )

        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.credits_used == 150

    @pytest.mark.asyncio
    async def test_invoice_without_subscription_is_ignored(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        outcome = await engine.process_event(
            build_event("invoice.payment_failed", build_invoice_object(None))
        )

        assert outcome.processed is True
        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_invoice_created_changes_nothing(
        self, engine: ReconciliationEngine, linked_subscription, test_user
    ):
        outcome = await engine.process_event(
            build_event("invoice.created", build_invoice_object())
        )

        assert outcome.processed is True
        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.credits_used == 150


class TestReprocessEvent:
    @pytest.mark.asyncio
    async def test_unknown_event(self, engine: ReconciliationEngine):
        with pytest.raises(LaunchpadException) as exc_info:
            await engine.reprocess_event("evt_missing")

        assert_launchpad_exception(
            exc_info.value, MessageCode.WEBHOOK_EVENT_NOT_FOUND, 404
        )

    @pytest.mark.asyncio
    async def test_already_processed_event(
        self, engine: ReconciliationEngine, db_session, webhook_event_factory
    ):
        await webhook_event_factory.create_async(
            db_session, commit=True, stripe_event_id="evt_done", processed=True
        )

        with pytest.raises(LaunchpadException) as exc_info:
            await engine.reprocess_event("evt_done")

        assert_launchpad_exception(
            exc_info.value, MessageCode.WEBHOOK_EVENT_ALREADY_PROCESSED, 400
        )

    @pytest.mark.asyncio
    async def test_unhandled_event_type(
        self, engine: ReconciliationEngine, db_session, webhook_event_factory
    ):
        await webhook_event_factory.create_async(
            db_session,
            commit=True,
            stripe_event_id="evt_customer",
            event_type="customer.created",
        )

        with pytest.raises(LaunchpadException) as exc_info:
            await engine.reprocess_event("evt_customer")

        assert_launchpad_exception(
            exc_info.value, MessageCode.WEBHOOK_EVENT_UNHANDLED, 400
        )

    @pytest.mark.asyncio
    async def test_replays_stored_payload(
        self,
        engine: ReconciliationEngine,
        db_session,
        webhook_event_factory,
        linked_subscription,
        test_user,
    ):
        event = build_event(
            "invoice.payment_failed", build_invoice_object(), event_id="evt_stored"
        )
        await webhook_event_factory.create_async(
            db_session,
            commit=True,
            stripe_event_id="evt_stored",
            event_type="invoice.payment_failed",
            data=event,
            error_message="OperationalError: database unavailable",
        )

        outcome = await engine.reprocess_event("evt_stored")

        assert outcome.processed is True
        subscription = await engine.subscriptions.find_by_user_id(test_user.id)
        assert subscription.status == SubscriptionStatus.PAST_DUE
        entry = await engine.ledger.find("evt_stored")
        assert entry.processed is True
        assert entry.error_message is None


class TestBillingNotifications:
    @pytest.fixture
    def notifier(self):
        return RecordingNotifier()

    @pytest.fixture
    def notifying_engine(self, db_session, fake_gateway, notifier):
        return ReconciliationEngine(db_session, fake_gateway, notifier=notifier)

    @pytest.mark.asyncio
    async def test_activation_email_sent_after_commit(
        self, notifying_engine, notifier, customer_only_subscription, test_user
    ):
        await notifying_engine.process_event(
            build_event("customer.subscription.created", build_subscription_object())
        )

        assert len(notifier.sent) == 1
        notification = notifier.sent[0]
        assert notification.template_name == "subscription_activated"
        assert notification.to_email == test_user.email
        assert notification.locale == "en"
        assert notification.context == {
            "plan_name": "PRO",
            "credits_total": 2000,
            "period_end": as_utc(PERIOD_END).strftime("%Y-%m-%d"),
        }

    @pytest.mark.asyncio
    async def test_payment_receipt_context(
        self, notifying_engine, notifier, linked_subscription
    ):
        await notifying_engine.process_event(
            build_event(
                "invoice.payment_succeeded",
                build_invoice_object(amount_paid=4900, currency="eur"),
            )
        )

        assert [n.template_name for n in notifier.sent] == ["payment_succeeded"]
        assert notifier.sent[0].context == {
            "amount": "49.00",
            "currency": "EUR",
            "invoice_url": "https://invoice.stripe.test/in_test_123",
        }

    @pytest.mark.asyncio
    async def test_no_email_when_same_period_update_changes_nothing(
        self, notifying_engine, notifier, linked_subscription
    ):
        await notifying_engine.process_event(
            build_event("customer.subscription.updated", build_subscription_object())
        )

        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_no_email_when_handler_fails(
        self, notifying_engine, notifier, fake_gateway
    ):
        fake_gateway.add_customer("cus_stranger", "stranger@example.com")

        with pytest.raises(LaunchpadException):
            await notifying_engine.process_event(
                build_event(
                    "customer.subscription.created",
                    build_subscription_object(customer_id="cus_stranger"),
                )
            )

        assert notifier.sent == []
