"""Global test configuration and fixtures for Launchpad API."""

from collections.abc import AsyncGenerator
from typing import Callable

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.api.core.constants import JWT_ALGORITHM, JWT_AUDIENCE
from src.database.connection import build_session_factory
from src.database.models import Base, Subscription, User
from src.modules.billing.reconciliation.actions import SubscriptionActions
from src.modules.billing.reconciliation.engine import ReconciliationEngine
from src.utils.settings.auth import AuthSettings
from tests.factories import SubscriptionFactory, UserFactory, WebhookEventFactory
from tests.utils.fake_gateway import FakeBillingGateway

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_BASE_URL = "http://test-launchpad-api"


@pytest.fixture
def user_factory():
    return UserFactory


@pytest.fixture
def subscription_factory():
    return SubscriptionFactory


@pytest.fixture
def webhook_event_factory():
    return WebhookEventFactory


@pytest_asyncio.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine):
    return build_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_gateway() -> FakeBillingGateway:
    return FakeBillingGateway()


@pytest.fixture
def engine(db_session: AsyncSession, fake_gateway: FakeBillingGateway):
    return ReconciliationEngine(db_session, fake_gateway)


@pytest.fixture
def actions(engine: ReconciliationEngine) -> SubscriptionActions:
    return SubscriptionActions(engine)


@pytest_asyncio.fixture
async def app(session_factory, fake_gateway: FakeBillingGateway) -> AsyncGenerator[FastAPI, None]:
    """Application with the test database and the fake gateway in its state."""
    from src.main import app

    async with LifespanManager(app):
        app.state.session_factory = session_factory
        app.state.billing_gateway = fake_gateway
        app.state.billing_notifier = None
        yield app


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession, user_factory) -> User:
    return await user_factory.create_async(
        db_session, commit=True, name="Test User", locale="en"
    )


@pytest_asyncio.fixture
async def test_subscription(
    db_session: AsyncSession, subscription_factory, test_user: User
) -> Subscription:
    """PRO subscription linked to Stripe for the test user."""
    return await subscription_factory.create_async(
        db_session,
        commit=True,
        active=True,
        user_id=test_user.id,
        stripe_customer_id="cus_test_123",
        stripe_subscription_id="sub_test_123",
    )


# JWT Token Fixtures
@pytest.fixture()
def jwt_token_factory() -> Callable[..., str]:
    """Factory for creating Supabase-style JWT tokens for test users."""
    auth_settings = AuthSettings()

    def create_token(
        user_id: str, email: str, name: str = "Test User", role: str = "authenticated"
    ) -> str:
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "aud": JWT_AUDIENCE,
            "user_metadata": {
                "full_name": name,
                "name": name,
                "email_verified": True,
            },
            "app_metadata": {"provider": "email", "providers": ["email"]},
            "is_anonymous": role == "anon",
        }
        return jwt.encode(
            payload, auth_settings.SUPABASE_JWT_SECRET, algorithm=JWT_ALGORITHM
        )

    return create_token


@pytest.fixture
def user_token(test_user: User, jwt_token_factory: Callable[..., str]) -> str:
    return jwt_token_factory(str(test_user.id), test_user.email, test_user.name)


# HTTP Client Fixtures
@pytest_asyncio.fixture
async def public_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url=TEST_BASE_URL,
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def authorized_client(
    app: FastAPI, user_token: str
) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url=TEST_BASE_URL,
        headers={"Authorization": f"Bearer {user_token}"},
    ) as ac:
        yield ac
