"""Webhook event ledger tests."""

from datetime import datetime, timedelta, timezone

import pytest

from src.modules.billing.webhooks.ledger import (
    DuplicateWebhookEventError,
    WebhookEventLedger,
)


class TestWebhookEventLedger:
    @pytest.fixture
    def ledger(self, db_session):
        return WebhookEventLedger(db_session)

    @pytest.mark.asyncio
    async def test_record_creates_unprocessed_entry(self, ledger):
        payload = {"id": "evt_1", "type": "invoice.created", "data": {"object": {}}}

        entry = await ledger.record("evt_1", "invoice.created", payload)

        assert entry.processed is False
        assert entry.error_message is None
        assert await ledger.exists("evt_1")
        stored = await ledger.find("evt_1")
        assert stored.data == payload
        assert stored.event_type == "invoice.created"

    @pytest.mark.asyncio
    async def test_record_same_event_twice_raises_duplicate(self, ledger):
        await ledger.record("evt_dup", "invoice.created", {})

        with pytest.raises(DuplicateWebhookEventError) as exc_info:
            await ledger.record("evt_dup", "invoice.created", {})

        assert exc_info.value.event_id == "evt_dup"
        stats = await ledger.get_stats()
        assert stats.total == 1

    @pytest.mark.asyncio
    async def test_find_unknown_event_returns_none(self, ledger):
        assert await ledger.find("evt_missing") is None
        assert not await ledger.exists("evt_missing")

    @pytest.mark.asyncio
    async def test_mark_processed_clears_error(self, ledger):
        await ledger.record("evt_2", "invoice.created", {})
        await ledger.record_failure("evt_2", "boom")

        await ledger.mark_processed("evt_2")
        await ledger.commit()

        entry = await ledger.find("evt_2")
        assert entry.processed is True
        assert entry.error_message is None

    @pytest.mark.asyncio
    async def test_record_failure_keeps_entry_unprocessed(self, ledger):
        await ledger.record("evt_3", "invoice.created", {})

        await ledger.record_failure("evt_3", "x" * 5000)

        entry = await ledger.find("evt_3")
        assert entry.processed is False
        assert len(entry.error_message) == 2000

    @pytest.mark.asyncio
    async def test_record_failure_ignores_processed_entries(
        self, ledger, db_session, webhook_event_factory
    ):
        await webhook_event_factory.create_async(
            db_session, commit=True, stripe_event_id="evt_done", processed=True
        )

        await ledger.record_failure("evt_done", "late failure")

        entry = await ledger.find("evt_done")
        assert entry.processed is True
        assert entry.error_message is None

    @pytest.mark.asyncio
    async def test_claim_failed_succeeds_once(self, ledger):
        await ledger.record("evt_4", "invoice.created", {})
        await ledger.record_failure("evt_4", "boom")

        assert await ledger.claim_failed("evt_4") is True
        assert await ledger.claim_failed("evt_4") is False

    @pytest.mark.asyncio
    async def test_claim_failed_rejects_in_flight_and_processed(
        self, ledger, db_session, webhook_event_factory
    ):
        await ledger.record("evt_in_flight", "invoice.created", {})
        await webhook_event_factory.create_async(
            db_session,
            commit=True,
            stripe_event_id="evt_processed",
            processed=True,
            error_message=None,
        )

        assert await ledger.claim_failed("evt_in_flight") is False
        assert await ledger.claim_failed("evt_processed") is False

    @pytest.mark.asyncio
    async def test_queries_and_stats(self, ledger, db_session, webhook_event_factory):
        await webhook_event_factory.create_batch_async(
            db_session, 2, commit=True, event_type="invoice.created", processed=True
        )
        await webhook_event_factory.create_async(
            db_session,
            commit=True,
            event_type="customer.subscription.updated",
            processed=False,
        )

        stats = await ledger.get_stats()
        assert stats.total == 3
        assert stats.processed == 2
        assert stats.unprocessed == 1
        assert stats.by_type == {
            "invoice.created": 2,
            "customer.subscription.updated": 1,
        }

        assert len(await ledger.find_recent(limit=2)) == 2
        assert len(await ledger.find_by_type("invoice.created")) == 2
        unprocessed = await ledger.find_unprocessed()
        assert [entry.event_type for entry in unprocessed] == [
            "customer.subscription.updated"
        ]

    @pytest.mark.asyncio
    async def test_processed_filter_applies_before_limit(
        self, ledger, db_session, webhook_event_factory
    ):
        now = datetime.now(timezone.utc)
        for minutes_ago in (30, 20):
            await webhook_event_factory.create_async(
                db_session,
                commit=True,
                event_type="invoice.created",
                processed=True,
                created_at=now - timedelta(minutes=minutes_ago),
            )
        for minutes_ago in (2, 1):
            await webhook_event_factory.create_async(
                db_session,
                commit=True,
                event_type="invoice.created",
                processed=False,
                created_at=now - timedelta(minutes=minutes_ago),
            )

        recent = await ledger.find_recent(limit=2, processed=True)
        by_type = await ledger.find_by_type("invoice.created", limit=2, processed=True)
        unprocessed = await ledger.find_unprocessed(event_type="invoice.created")

        assert [entry.processed for entry in recent] == [True, True]
        assert [entry.processed for entry in by_type] == [True, True]
        assert len(unprocessed) == 2
        assert await ledger.find_unprocessed(event_type="invoice.paid") == []

    @pytest.mark.asyncio
    async def test_clear_deletes_everything(
        self, ledger, db_session, webhook_event_factory
    ):
        await webhook_event_factory.create_batch_async(db_session, 3, commit=True)

        assert await ledger.clear() == 3
        assert (await ledger.get_stats()).total == 0
