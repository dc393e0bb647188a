"""Stripe webhook endpoint."""

from fastapi import APIRouter, Request, status

from src.api.core.constants import MAX_WEBHOOK_PAYLOAD_BYTES, STRIPE_SIGNATURE_HEADER
from src.api.core.dependencies import BillingGatewayDep, ReconciliationEngineDep
from src.api.core.exceptions.base import LaunchpadException
from src.api.core.messages import MessageCode
from src.api.stripe.schemas import WebhookReceipt
from src.modules.billing.stripe.gateway import InvalidWebhookSignatureError
from src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


@router.post("/webhook", response_model=WebhookReceipt)
async def stripe_webhook(
    request: Request,
    gateway: BillingGatewayDep,
    engine: ReconciliationEngineDep,
) -> WebhookReceipt:
    """Verify and apply a Stripe webhook event.

    Any non-2xx answer makes Stripe redeliver, so handler failures surface as
    500 while duplicates and unhandled event types are acknowledged.
    """
    payload = await request.body()

    if not payload:
        raise LaunchpadException(
            MessageCode.WEBHOOK_PAYLOAD_INVALID,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Empty webhook payload"},
        )

    if len(payload) > MAX_WEBHOOK_PAYLOAD_BYTES:
        raise LaunchpadException(
            MessageCode.WEBHOOK_PAYLOAD_INVALID,
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            details={"description": "Webhook payload too large"},
        )

    signature = request.headers.get(STRIPE_SIGNATURE_HEADER)
    if not signature:
        raise LaunchpadException(
            MessageCode.WEBHOOK_SIGNATURE_INVALID,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Missing stripe-signature header"},
        )

    if not signature.startswith("t=") or ",v" not in signature:
        raise LaunchpadException(
            MessageCode.WEBHOOK_SIGNATURE_INVALID,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Invalid stripe-signature format"},
        )

    try:
        event = gateway.construct_event(payload, signature)
    except InvalidWebhookSignatureError as e:
        logger.warning(f"Rejected webhook with invalid signature: {e}")
        raise LaunchpadException(
            MessageCode.WEBHOOK_SIGNATURE_INVALID,
            status.HTTP_400_BAD_REQUEST,
        )
    except ValueError:
        raise LaunchpadException(
            MessageCode.WEBHOOK_PAYLOAD_INVALID,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Webhook payload is not valid JSON"},
        )

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise LaunchpadException(
            MessageCode.WEBHOOK_PAYLOAD_INVALID,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Webhook event is missing its id or type"},
        )

    try:
        outcome = await engine.process_event(event)
    except Exception as e:
        raise LaunchpadException(
            MessageCode.WEBHOOK_PROCESSING_FAILED,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={
                "event_id": event.get("id"),
                "event_type": event.get("type"),
                "error": type(e).__name__,
            },
        )

    return WebhookReceipt(
        received=True, processed=outcome.processed, duplicate=outcome.duplicate
    )
