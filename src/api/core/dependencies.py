from typing import Annotated, AsyncGenerator

from fastapi import Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.core.exceptions.base import LaunchpadException
from src.api.core.messages import MessageCode
from src.core.context import AuthenticatedUserContext
from src.modules.billing.notifications import BillingNotifier
from src.modules.billing.reconciliation.actions import SubscriptionActions
from src.modules.billing.reconciliation.engine import ReconciliationEngine
from src.modules.billing.stripe.gateway import BillingGateway
from src.modules.billing.subscriptions.repository import SubscriptionRepository
from src.modules.billing.webhooks.ledger import WebhookEventLedger
from src.utils.settings.app import AppSettings


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session from app state."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_billing_gateway(request: Request) -> BillingGateway:
    """Gateway created at startup; tests swap in a fake."""
    return request.app.state.billing_gateway


def get_billing_notifier(request: Request) -> BillingNotifier | None:
    return getattr(request.app.state, "billing_notifier", None)


async def get_reconciliation_engine(
    db: Annotated[AsyncSession, Depends(get_db_session)],
    gateway: Annotated[BillingGateway, Depends(get_billing_gateway)],
    notifier: Annotated[BillingNotifier | None, Depends(get_billing_notifier)],
) -> ReconciliationEngine:
    return ReconciliationEngine(db, gateway, notifier)


async def get_subscription_actions(
    engine: Annotated[ReconciliationEngine, Depends(get_reconciliation_engine)],
) -> SubscriptionActions:
    return SubscriptionActions(engine)


async def get_subscription_repository(
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> SubscriptionRepository:
    return SubscriptionRepository(db)


async def get_webhook_event_ledger(
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> WebhookEventLedger:
    return WebhookEventLedger(db)


async def get_current_user_authenticated(request: Request) -> AuthenticatedUserContext:
    """Dependency to get current authenticated user.

    Assumes auth middleware has set request.state.user.
    """
    user = getattr(request.state, "user", None)

    if not user:
        raise LaunchpadException(MessageCode.AUTH_REQUIRED, status.HTTP_401_UNAUTHORIZED)

    return AuthenticatedUserContext(user=user)


async def require_debug_access(
    current_user: Annotated[
        AuthenticatedUserContext, Depends(get_current_user_authenticated)
    ],
) -> AuthenticatedUserContext:
    """Any signed-in user outside production, listed admins in production."""
    app_settings = AppSettings()
    if not app_settings.is_production:
        return current_user

    admin_emails = {email.lower() for email in app_settings.ADMIN_EMAILS}
    if current_user.user.email.lower() not in admin_emails:
        raise LaunchpadException(
            MessageCode.INSUFFICIENT_PERMISSIONS, status.HTTP_403_FORBIDDEN
        )
    return current_user


AsyncSessionDep = Annotated[AsyncSession, Depends(get_db_session)]
BillingGatewayDep = Annotated[BillingGateway, Depends(get_billing_gateway)]
ReconciliationEngineDep = Annotated[
    ReconciliationEngine, Depends(get_reconciliation_engine)
]
SubscriptionActionsDep = Annotated[
    SubscriptionActions, Depends(get_subscription_actions)
]
SubscriptionRepositoryDep = Annotated[
    SubscriptionRepository, Depends(get_subscription_repository)
]
WebhookEventLedgerDep = Annotated[
    WebhookEventLedger, Depends(get_webhook_event_ledger)
]

CurrentUserAuthDep = Annotated[
    AuthenticatedUserContext, Depends(get_current_user_authenticated)
]
DebugAccessDep = Annotated[AuthenticatedUserContext, Depends(require_debug_access)]
