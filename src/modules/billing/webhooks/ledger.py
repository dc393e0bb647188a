"""Append-only idempotency log of Stripe webhook events."""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from src.core.base import BaseService
from src.database.models import WebhookEvent


class DuplicateWebhookEventError(Exception):
    """Another delivery already recorded this event id."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Webhook event {event_id} already recorded")


@dataclass
class LedgerStats:
    total: int
    processed: int
    unprocessed: int
    by_type: dict[str, int] = field(default_factory=dict)


class WebhookEventLedger(BaseService):
    async def exists(self, event_id: str) -> bool:
        stmt = select(WebhookEvent.id).where(WebhookEvent.stripe_event_id == event_id)
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def find(self, event_id: str) -> WebhookEvent | None:
        stmt = (
            select(WebhookEvent)
            .where(WebhookEvent.stripe_event_id == event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def record(
        self, event_id: str, event_type: str, payload: dict[str, Any]
    ) -> WebhookEvent:
        """Insert an unprocessed entry and commit it.

        The unique constraint on the event id decides races between
        concurrent deliveries: the loser gets ``DuplicateWebhookEventError``.
        """
        entry = WebhookEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            data=payload,
            processed=False,
        )
        self.db.add(entry)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateWebhookEventError(event_id)

        self.logger.debug(f"Recorded webhook event {event_id}", event_type=event_type)
        return entry

    async def mark_processed(self, event_id: str) -> None:
        """Flip ``processed`` inside the caller's transaction."""
        stmt = (
            update(WebhookEvent)
            .where(
                WebhookEvent.stripe_event_id == event_id,
                WebhookEvent.processed.is_(False),
            )
            .values(processed=True, error_message=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def record_failure(self, event_id: str, error: str) -> None:
        stmt = (
            update(WebhookEvent)
            .where(
                WebhookEvent.stripe_event_id == event_id,
                WebhookEvent.processed.is_(False),
            )
            .values(error_message=error[:2000])
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        await self.commit()

    async def claim_failed(self, event_id: str) -> bool:
        """Claim a previously failed event for another attempt.

        Only one concurrent caller can clear the recorded failure, so only
        one of them re-runs the handler.
        """
        stmt = (
            update(WebhookEvent)
            .where(
                WebhookEvent.stripe_event_id == event_id,
                WebhookEvent.processed.is_(False),
                WebhookEvent.error_message.is_not(None),
            )
            .values(error_message=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.commit()
        return result.rowcount == 1

    async def find_recent(
        self, limit: int = 50, processed: bool | None = None
    ) -> list[WebhookEvent]:
        stmt = select(WebhookEvent)
        if processed is not None:
            stmt = stmt.where(WebhookEvent.processed.is_(processed))
        stmt = stmt.order_by(WebhookEvent.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_by_type(
        self, event_type: str, limit: int = 20, processed: bool | None = None
    ) -> list[WebhookEvent]:
        stmt = select(WebhookEvent).where(WebhookEvent.event_type == event_type)
        if processed is not None:
            stmt = stmt.where(WebhookEvent.processed.is_(processed))
        stmt = stmt.order_by(WebhookEvent.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_unprocessed(
        self, limit: int = 100, event_type: str | None = None
    ) -> list[WebhookEvent]:
        """Oldest first, the order an operator should replay them in."""
        stmt = select(WebhookEvent).where(WebhookEvent.processed.is_(False))
        if event_type:
            stmt = stmt.where(WebhookEvent.event_type == event_type)
        stmt = stmt.order_by(WebhookEvent.created_at.asc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_stats(self) -> LedgerStats:
        stmt = select(
            WebhookEvent.event_type,
            WebhookEvent.processed,
            func.count(WebhookEvent.id),
        ).group_by(WebhookEvent.event_type, WebhookEvent.processed)
        result = await self.db.execute(stmt)

        stats = LedgerStats(total=0, processed=0, unprocessed=0)
        for event_type, processed, count in result.all():
            stats.total += count
            if processed:
                stats.processed += count
            else:
                stats.unprocessed += count
            stats.by_type[event_type] = stats.by_type.get(event_type, 0) + count
        return stats

    async def clear(self) -> int:
        result = await self.db.execute(delete(WebhookEvent))
        await self.commit()
        self.logger.warning(f"Cleared {result.rowcount} webhook events")
        return result.rowcount
