from fastapi import APIRouter, Path

from src.api.billing.schemas import (
    CancellationModel,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PlanModel,
    PortalSessionRequest,
    PortalSessionResponse,
    SubscriptionModel,
    SwitchPlanRequest,
)
from src.api.core.dependencies import CurrentUserAuthDep, SubscriptionActionsDep
from src.api.core.messages import APIResponse, MessageCode
from src.modules.billing.plans import get_plan_catalog

router = APIRouter(
    prefix="/billing",
    tags=["billing"],
)


@router.get("/plans", response_model=APIResponse[list[PlanModel]])
async def list_plans() -> APIResponse[list[PlanModel]]:
    """Public plan catalog with credits, limits and purchasable prices."""
    plans = [PlanModel.from_catalog_entry(entry) for entry in get_plan_catalog()]
    return APIResponse.success(data=plans)


@router.get("/subscription", response_model=APIResponse[SubscriptionModel | None])
async def get_subscription(
    current_user: CurrentUserAuthDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[SubscriptionModel | None]:
    subscription = await actions.get_subscription(current_user.user.id)
    data = SubscriptionModel.from_record(subscription) if subscription else None
    return APIResponse.success(data=data)


@router.post(
    "/checkout-session", response_model=APIResponse[CheckoutSessionResponse]
)
async def create_checkout_session(
    request_data: CheckoutSessionRequest,
    current_user: CurrentUserAuthDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[CheckoutSessionResponse]:
    """Create a Stripe checkout session, creating the customer on first use."""
    session = await actions.create_checkout_session(
        user=current_user.user,
        price_id=request_data.price_id,
        success_url=request_data.success_url,
        cancel_url=request_data.cancel_url,
    )
    return APIResponse.success(
        message_code=MessageCode.CREATED,
        data=CheckoutSessionResponse(session_id=session["id"], url=session.get("url")),
    )


@router.post("/portal-session", response_model=APIResponse[PortalSessionResponse])
async def create_portal_session(
    request_data: PortalSessionRequest,
    current_user: CurrentUserAuthDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[PortalSessionResponse]:
    """Create a Stripe customer portal session for managing billing."""
    url = await actions.create_portal_session(
        current_user.user, request_data.return_url
    )
    return APIResponse.success(
        message_code=MessageCode.CREATED, data=PortalSessionResponse(url=url)
    )


@router.post(
    "/checkout-completion/{session_id}",
    response_model=APIResponse[SubscriptionModel],
)
async def complete_checkout(
    current_user: CurrentUserAuthDep,
    actions: SubscriptionActionsDep,
    session_id: str = Path(..., description="Stripe checkout session ID"),
) -> APIResponse[SubscriptionModel]:
    """Link a paid checkout right away instead of waiting for its webhooks."""
    subscription = await actions.complete_checkout(current_user.user, session_id)
    return APIResponse.success(
        message_code=MessageCode.SUBSCRIPTION_SYNCED,
        data=SubscriptionModel.from_record(subscription),
    )


@router.post("/switch-plan", response_model=APIResponse[SubscriptionModel])
async def switch_plan(
    request_data: SwitchPlanRequest,
    current_user: CurrentUserAuthDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[SubscriptionModel]:
    subscription = await actions.switch_plan(
        current_user.user.id, request_data.new_price_id
    )
    return APIResponse.success(
        message_code=MessageCode.SUBSCRIPTION_UPDATED,
        data=SubscriptionModel.from_record(subscription),
    )


@router.post("/cancel-subscription", response_model=APIResponse[CancellationModel])
async def cancel_subscription(
    current_user: CurrentUserAuthDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[CancellationModel]:
    """Cancel at the end of the current billing period."""
    provider_subscription = await actions.cancel_subscription(current_user.user.id)
    return APIResponse.success(
        message_code=MessageCode.SUBSCRIPTION_CANCEL_SCHEDULED,
        data=CancellationModel.from_provider(provider_subscription),
    )


@router.post(
    "/cancel-subscription-immediately",
    response_model=APIResponse[SubscriptionModel],
)
async def cancel_subscription_immediately(
    current_user: CurrentUserAuthDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[SubscriptionModel]:
    subscription = await actions.cancel_subscription_immediately(current_user.user.id)
    return APIResponse.success(
        message_code=MessageCode.SUBSCRIPTION_CANCELED,
        data=SubscriptionModel.from_record(subscription),
    )


@router.post(
    "/reactivate-subscription", response_model=APIResponse[CancellationModel]
)
async def reactivate_subscription(
    current_user: CurrentUserAuthDep,
    actions: SubscriptionActionsDep,
) -> APIResponse[CancellationModel]:
    provider_subscription = await actions.reactivate_subscription(
        current_user.user.id
    )
    return APIResponse.success(
        message_code=MessageCode.SUBSCRIPTION_REACTIVATED,
        data=CancellationModel.from_provider(provider_subscription),
    )
