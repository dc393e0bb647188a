"""Billing endpoints tests."""

import pytest
from fastapi import status
from httpx import AsyncClient

from src.api.core.messages import MessageCode
from src.database.models import SubscriptionStatus
from src.modules.billing.subscriptions.repository import SubscriptionRepository
from tests.utils.assertions import (
    assert_error_response,
    assert_success_response,
    assert_validation_error,
)


@pytest.fixture
def provider_subscription(fake_gateway):
    return fake_gateway.add_subscription()


class TestPublicEndpoints:
    @pytest.mark.asyncio
    async def test_plans_without_token(self, public_client: AsyncClient):
        response = await public_client.get("/v1/billing/plans")

        data = assert_success_response(response)
        plans = {plan["name"]: plan for plan in data}
        assert set(plans) == {"FREE", "STARTUP", "PRO", "ENTERPRISE"}
        assert plans["FREE"]["credits"] == 10
        assert plans["FREE"]["price_ids"] == []
        assert plans["ENTERPRISE"]["credits"] is None
        assert plans["ENTERPRISE"]["limits"]["max_files"] is None
        assert "price_pro_monthly" in plans["PRO"]["price_ids"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,url",
        [
            ("GET", "/v1/billing/subscription"),
            ("POST", "/v1/billing/switch-plan"),
            ("POST", "/v1/billing/cancel-subscription"),
            ("POST", "/v1/billing/cancel-subscription-immediately"),
            ("POST", "/v1/billing/reactivate-subscription"),
        ],
    )
    async def test_user_endpoints_require_token(
        self, public_client: AsyncClient, method: str, url: str
    ):
        response = await public_client.request(method, url)

        assert_error_response(
            response, MessageCode.AUTH_REQUIRED, status.HTTP_401_UNAUTHORIZED
        )

    @pytest.mark.asyncio
    async def test_invalid_token(self, public_client: AsyncClient):
        response = await public_client.get(
            "/v1/billing/subscription", headers={"Authorization": "Bearer garbage"}
        )

        assert_error_response(
            response, MessageCode.INVALID_TOKEN, status.HTTP_401_UNAUTHORIZED
        )


class TestSubscriptionView:
    @pytest.mark.asyncio
    async def test_no_subscription_yet(self, authorized_client: AsyncClient):
        response = await authorized_client.get("/v1/billing/subscription")

        assert assert_success_response(response) is None

    @pytest.mark.asyncio
    async def test_active_subscription(
        self, authorized_client: AsyncClient, test_subscription
    ):
        response = await authorized_client.get("/v1/billing/subscription")

        assert_success_response(
            response,
            data_assertions={
                "status": "ACTIVE",
                "plan_name": "PRO",
                "stripe_subscription_id": "sub_test_123",
                "credits_total": 2000,
                "credits_used": 0,
                "credits_remaining": 2000,
                "is_entitled": True,
                "limits.max_files": 1000,
            },
        )


class TestCheckoutEndpoints:
    @pytest.mark.asyncio
    async def test_create_checkout_session(
        self, authorized_client: AsyncClient, fake_gateway, test_user
    ):
        response = await authorized_client.post(
            "/v1/billing/checkout-session",
            json={
                "price_id": "price_startup_monthly",
                "success_url": "https://app.test/success",
                "cancel_url": "https://app.test/cancel",
            },
        )

        data = assert_success_response(response, MessageCode.CREATED)
        assert data["session_id"].startswith("cs_fake_")
        assert data["url"].startswith("https://checkout.stripe.test/")
        (create_call,) = fake_gateway.calls_to("create_customer")
        assert create_call[0] == test_user.email

    @pytest.mark.asyncio
    async def test_checkout_rejects_relative_urls(self, authorized_client: AsyncClient):
        response = await authorized_client.post(
            "/v1/billing/checkout-session",
            json={
                "price_id": "price_startup_monthly",
                "success_url": "/success",
                "cancel_url": "ftp://app.test/cancel",
            },
        )

        assert_validation_error(response, ["success_url", "cancel_url"])

    @pytest.mark.asyncio
    async def test_checkout_unknown_price(self, authorized_client: AsyncClient):
        response = await authorized_client.post(
            "/v1/billing/checkout-session",
            json={
                "price_id": "price_bogus",
                "success_url": "https://app.test/success",
                "cancel_url": "https://app.test/cancel",
            },
        )

        assert_error_response(
            response, MessageCode.UNKNOWN_PRICE, status.HTTP_400_BAD_REQUEST
        )

    @pytest.mark.asyncio
    async def test_checkout_completion(
        self, authorized_client: AsyncClient, fake_gateway, test_user
    ):
        fake_gateway.add_checkout_session(
            "cs_done", "cus_done", "sub_done", metadata={"user_id": str(test_user.id)}
        )
        fake_gateway.add_subscription(subscription_id="sub_done", customer_id="cus_done")

        response = await authorized_client.post("/v1/billing/checkout-completion/cs_done")

        assert_success_response(
            response,
            MessageCode.SUBSCRIPTION_SYNCED,
            data_assertions={
                "stripe_customer_id": "cus_done",
                "stripe_subscription_id": "sub_done",
                "status": "ACTIVE",
            },
        )

    @pytest.mark.asyncio
    async def test_portal_session(
        self, authorized_client: AsyncClient, test_subscription
    ):
        response = await authorized_client.post(
            "/v1/billing/portal-session", json={"return_url": "https://app.test/billing"}
        )

        assert_success_response(
            response,
            MessageCode.CREATED,
            data_assertions={
                "url": "https://billing.stripe.test/p/session/cus_test_123"
            },
        )


class TestSubscriptionChanges:
    @pytest.mark.asyncio
    async def test_switch_plan(
        self,
        authorized_client: AsyncClient,
        fake_gateway,
        test_subscription,
        provider_subscription,
    ):
        response = await authorized_client.post(
            "/v1/billing/switch-plan", json={"new_price_id": "price_startup_yearly"}
        )

        assert_success_response(
            response,
            MessageCode.SUBSCRIPTION_UPDATED,
            data_assertions={
                "plan_name": "STARTUP",
                "price_id": "price_startup_yearly",
                "credits_total": 500,
                "credits_used": 0,
            },
        )
        assert fake_gateway.subscriptions["sub_test_123"]["items"]["data"][0]["price"][
            "id"
        ] == "price_startup_yearly"

    @pytest.mark.asyncio
    async def test_switch_plan_requires_price(self, authorized_client: AsyncClient):
        response = await authorized_client.post("/v1/billing/switch-plan", json={})

        assert_validation_error(response, ["new_price_id"])

    @pytest.mark.asyncio
    async def test_switch_plan_unknown_price(
        self, authorized_client: AsyncClient, test_subscription
    ):
        response = await authorized_client.post(
            "/v1/billing/switch-plan", json={"new_price_id": "price_bogus"}
        )

        assert_error_response(
            response, MessageCode.UNKNOWN_PRICE, status.HTTP_400_BAD_REQUEST
        )

    @pytest.mark.asyncio
    async def test_switch_plan_without_subscription(self, authorized_client: AsyncClient):
        response = await authorized_client.post(
            "/v1/billing/switch-plan", json={"new_price_id": "price_pro_monthly"}
        )

        assert_error_response(
            response, MessageCode.SUBSCRIPTION_NOT_FOUND, status.HTTP_404_NOT_FOUND
        )

    @pytest.mark.asyncio
    async def test_cancel_then_reactivate(
        self, authorized_client: AsyncClient, test_subscription, provider_subscription
    ):
        cancel = await authorized_client.post("/v1/billing/cancel-subscription")
        assert_success_response(
            cancel,
            MessageCode.SUBSCRIPTION_CANCEL_SCHEDULED,
            data_assertions={
                "subscription_id": "sub_test_123",
                "cancel_at_period_end": True,
            },
        )

        reactivate = await authorized_client.post("/v1/billing/reactivate-subscription")
        assert_success_response(
            reactivate,
            MessageCode.SUBSCRIPTION_REACTIVATED,
            data_assertions={"cancel_at_period_end": False, "status": "active"},
        )

    @pytest.mark.asyncio
    async def test_reactivate_active_subscription(
        self, authorized_client: AsyncClient, test_subscription, provider_subscription
    ):
        response = await authorized_client.post("/v1/billing/reactivate-subscription")

        assert_error_response(
            response,
            MessageCode.SUBSCRIPTION_ALREADY_ACTIVE,
            status.HTTP_400_BAD_REQUEST,
        )

    @pytest.mark.asyncio
    async def test_cancel_immediately(
        self,
        authorized_client: AsyncClient,
        db_session,
        test_subscription,
        provider_subscription,
        test_user,
    ):
        response = await authorized_client.post(
            "/v1/billing/cancel-subscription-immediately"
        )

        assert_success_response(
            response,
            MessageCode.SUBSCRIPTION_CANCELED,
            data_assertions={
                "status": "CANCELED",
                "plan_name": "FREE",
                "stripe_subscription_id": None,
                "credits_total": 10,
                "is_entitled": False,
            },
        )
        subscription = await SubscriptionRepository(db_session).find_by_user_id(
            test_user.id
        )
        assert subscription.status == SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_stripe_outage_is_bad_gateway(
        self,
        authorized_client: AsyncClient,
        fake_gateway,
        test_subscription,
        provider_subscription,
    ):
        fake_gateway.fail("set_cancel_at_period_end")

        response = await authorized_client.post("/v1/billing/cancel-subscription")

        assert_error_response(
            response, MessageCode.EXTERNAL_SERVICE_ERROR, status.HTTP_502_BAD_GATEWAY
        )
