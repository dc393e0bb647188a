"""Operator endpoints for inspecting the webhook ledger and repairing records."""

from fastapi import APIRouter, Path, Query, status

from src.api.billing.schemas import SubscriptionModel
from src.api.core.constants import DEFAULT_LEDGER_PAGE_SIZE, MAX_LEDGER_PAGE_SIZE
from src.api.core.dependencies import (
    DebugAccessDep,
    ReconciliationEngineDep,
    SubscriptionActionsDep,
    SubscriptionRepositoryDep,
    WebhookEventLedgerDep,
)
from src.api.core.exceptions.base import LaunchpadException
from src.api.core.messages import APIResponse, MessageCode
from src.api.debug.schemas import (
    ClearedEventsModel,
    ReprocessResultModel,
    SubscriptionDebugModel,
    SubscriptionResetModel,
    SubscriptionSyncModel,
    WebhookEventDetailModel,
    WebhookEventModel,
    WebhookEventStatsModel,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/debug", tags=["debug"])


@router.get("/webhook-events", response_model=APIResponse[list[WebhookEventModel]])
async def list_webhook_events(
    current_user: DebugAccessDep,
    ledger: WebhookEventLedgerDep,
    limit: int = Query(
        default=DEFAULT_LEDGER_PAGE_SIZE, ge=1, le=MAX_LEDGER_PAGE_SIZE
    ),
    event_type: str | None = Query(default=None),
    processed: bool | None = Query(default=None),
) -> APIResponse[list[WebhookEventModel]]:
    """Recent ledger entries. ``processed=false`` lists the replay queue."""
    if processed is False:
        events = await ledger.find_unprocessed(limit, event_type=event_type)
    elif event_type:
        events = await ledger.find_by_type(event_type, limit, processed=processed)
    else:
        events = await ledger.find_recent(limit, processed=processed)

    return APIResponse.success(
        data=[WebhookEventModel.model_validate(event) for event in events]
    )


@router.get(
    "/webhook-events/stats", response_model=APIResponse[WebhookEventStatsModel]
)
async def get_webhook_event_stats(
    current_user: DebugAccessDep,
    ledger: WebhookEventLedgerDep,
) -> APIResponse[WebhookEventStatsModel]:
    stats = await ledger.get_stats()
    return APIResponse.success(data=WebhookEventStatsModel.model_validate(stats))


@router.get(
    "/webhook-events/{event_id}",
    response_model=APIResponse[WebhookEventDetailModel],
)
async def get_webhook_event(
    current_user: DebugAccessDep,
    ledger: WebhookEventLedgerDep,
    event_id: str = Path(..., description="Stripe event ID"),
) -> APIResponse[WebhookEventDetailModel]:
    event = await ledger.find(event_id)
    if event is None:
        raise LaunchpadException(
            MessageCode.WEBHOOK_EVENT_NOT_FOUND,
            status.HTTP_404_NOT_FOUND,
            details={"event_id": event_id},
        )
    return APIResponse.success(data=WebhookEventDetailModel.model_validate(event))


@router.post(
    "/webhook-events/{event_id}/reprocess",
    response_model=APIResponse[ReprocessResultModel],
)
async def reprocess_webhook_event(
    current_user: DebugAccessDep,
    engine: ReconciliationEngineDep,
    event_id: str = Path(..., description="Stripe event ID"),
) -> APIResponse[ReprocessResultModel]:
    logger.info(
        f"Manual reprocess of webhook event {event_id}",
        requested_by=current_user.user.email,
    )
    try:
        outcome = await engine.reprocess_event(event_id)
    except LaunchpadException:
        raise
    except Exception as e:
        raise LaunchpadException(
            MessageCode.WEBHOOK_PROCESSING_FAILED,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"event_id": event_id, "error": str(e)},
        )

    return APIResponse.success(
        data=ReprocessResultModel(
            event_id=outcome.event_id,
            event_type=outcome.event_type,
            processed=outcome.processed,
        )
    )


@router.delete("/webhook-events", response_model=APIResponse[ClearedEventsModel])
async def clear_webhook_events(
    current_user: DebugAccessDep,
    ledger: WebhookEventLedgerDep,
) -> APIResponse[ClearedEventsModel]:
    logger.warning(
        "Clearing webhook ledger", requested_by=current_user.user.email
    )
    deleted = await ledger.clear()
    return APIResponse.success(
        message_code=MessageCode.DELETED, data=ClearedEventsModel(deleted=deleted)
    )


@router.get("/subscriptions", response_model=APIResponse[list[SubscriptionModel]])
async def list_subscriptions(
    current_user: DebugAccessDep,
    repository: SubscriptionRepositoryDep,
    limit: int = Query(default=100, ge=1, le=MAX_LEDGER_PAGE_SIZE),
) -> APIResponse[list[SubscriptionModel]]:
    subscriptions = await repository.list_all(limit)
    return APIResponse.success(
        data=[SubscriptionModel.from_record(record) for record in subscriptions]
    )


@router.get("/subscription", response_model=APIResponse[SubscriptionDebugModel])
async def describe_subscription(
    current_user: DebugAccessDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[SubscriptionDebugModel]:
    """The caller's record next to what Stripe reports for it."""
    view = await actions.describe_subscription(current_user.user.id)
    return APIResponse.success(
        data=SubscriptionDebugModel(
            subscription=SubscriptionModel.from_record(view["subscription"]),
            provider_subscription=view["provider_subscription"],
            provider_error=view["provider_error"],
            in_sync=view["in_sync"],
        )
    )


@router.post("/subscription/sync", response_model=APIResponse[SubscriptionSyncModel])
async def sync_subscription(
    current_user: DebugAccessDep,
    actions: SubscriptionActionsDep,
    repository: SubscriptionRepositoryDep,
) -> APIResponse[SubscriptionSyncModel]:
    record = await repository.find_by_user_id(current_user.user.id)
    if record is None:
        raise LaunchpadException(
            MessageCode.SUBSCRIPTION_NOT_FOUND, status.HTTP_404_NOT_FOUND
        )
    before = SubscriptionModel.from_record(record)

    synced = await actions.sync_subscription(current_user.user.id)
    return APIResponse.success(
        message_code=MessageCode.SUBSCRIPTION_SYNCED,
        data=SubscriptionSyncModel(
            before=before, after=SubscriptionModel.from_record(synced)
        ),
    )


@router.delete("/subscription", response_model=APIResponse[SubscriptionResetModel])
async def reset_subscription(
    current_user: DebugAccessDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[SubscriptionResetModel]:
    deleted = await actions.reset_subscription(current_user.user.id)
    return APIResponse.success(
        message_code=MessageCode.DELETED, data=SubscriptionResetModel(deleted=deleted)
    )
