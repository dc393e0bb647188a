"""Outbound Stripe capability used by the reconciliation engine.

``BillingGateway`` is the seam: the engine only ever talks to this protocol,
the app wires a ``StripeGateway`` into ``app.state`` at startup and the test
suite wires in a fake. Every method returns plain dictionaries shaped like
Stripe's API objects.
"""

import json
from typing import Any, Callable, Protocol
from uuid import UUID

import stripe  # type: ignore
from stripe import StripeError  # type: ignore

from src.modules.billing.constants import PRORATION_BEHAVIOR, SUBSCRIPTION_LIST_LIMIT
from src.utils.logger import get_logger
from src.utils.settings.stripe import StripeSettings

logger = get_logger(__name__)


class BillingGatewayError(Exception):
    """Stripe rejected the call or could not be reached."""


class ResourceMissingError(BillingGatewayError):
    """Stripe does not know the requested object (``resource_missing``)."""


class InvalidWebhookSignatureError(BillingGatewayError):
    """The webhook payload does not match its ``stripe-signature`` header."""


class BillingGateway(Protocol):
    async def create_customer(
        self, email: str, name: str | None, user_id: UUID
    ) -> str: ...

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]: ...

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> dict[str, Any]: ...

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]: ...

    async def create_portal_session(self, customer_id: str, return_url: str) -> str: ...

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]: ...

    async def update_subscription_item(
        self,
        subscription_id: str,
        item_id: str,
        new_price_id: str,
        proration_behavior: str = PRORATION_BEHAVIOR,
    ) -> dict[str, Any]: ...

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool
    ) -> dict[str, Any]: ...

    async def cancel_immediately(self, subscription_id: str) -> dict[str, Any]: ...

    async def list_subscriptions_for_customer(
        self,
        customer_id: str,
        status: str = "all",
        limit: int = SUBSCRIPTION_LIST_LIMIT,
    ) -> list[dict[str, Any]]: ...

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]: ...


def _to_dict(stripe_object: Any) -> dict[str, Any]:
    if hasattr(stripe_object, "to_dict"):
        return stripe_object.to_dict()
    return dict(stripe_object)


class StripeGateway:
    """``BillingGateway`` backed by the Stripe SDK.

    The API key is passed on every request instead of being assigned to the
    module-level ``stripe.api_key``.
    """

    def __init__(self, settings: StripeSettings | None = None):
        settings = settings or StripeSettings()
        self._api_key = settings.STRIPE_SECRET_KEY.get_secret_value()
        self._webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        self._portal_configuration_id = settings.STRIPE_PORTAL_CONFIGURATION_ID

    def _request(self, operation: str, func: Callable[..., Any], *args, **kwargs):
        try:
            return func(*args, api_key=self._api_key, **kwargs)
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                raise ResourceMissingError(str(e)) from e
            logger.error(f"Stripe rejected {operation}: {e}", code=e.code)
            raise BillingGatewayError(f"Failed to {operation}: {e}") from e
        except StripeError as e:
            logger.error(f"Stripe error during {operation}: {e}")
            raise BillingGatewayError(f"Failed to {operation}: {e}") from e

    async def create_customer(
        self, email: str, name: str | None, user_id: UUID
    ) -> str:
        customer = self._request(
            "create customer",
            stripe.Customer.create,
            email=email,
            name=name or None,
            metadata={"user_id": str(user_id)},
        )
        logger.info(f"Created Stripe customer {customer['id']} for user {user_id}")
        return customer["id"]

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        return _to_dict(
            self._request("retrieve customer", stripe.Customer.retrieve, customer_id)
        )

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        session = self._request(
            "create checkout session",
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
            allow_promotion_codes=True,
            billing_address_collection="required",
        )
        return _to_dict(session)

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        session = self._request(
            "retrieve checkout session",
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["subscription"],
        )
        return _to_dict(session)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        params: dict[str, Any] = {"customer": customer_id, "return_url": return_url}
        if self._portal_configuration_id:
            params["configuration"] = self._portal_configuration_id

        session = self._request(
            "create portal session", stripe.billing_portal.Session.create, **params
        )
        return session["url"]

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        return _to_dict(
            self._request(
                "retrieve subscription", stripe.Subscription.retrieve, subscription_id
            )
        )

    async def update_subscription_item(
        self,
        subscription_id: str,
        item_id: str,
        new_price_id: str,
        proration_behavior: str = PRORATION_BEHAVIOR,
    ) -> dict[str, Any]:
        subscription = self._request(
            "update subscription",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=False,
            proration_behavior=proration_behavior,
            items=[{"id": item_id, "price": new_price_id, "quantity": 1}],
        )
        return _to_dict(subscription)

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool
    ) -> dict[str, Any]:
        subscription = self._request(
            "update cancellation",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=cancel,
        )
        return _to_dict(subscription)

    async def cancel_immediately(self, subscription_id: str) -> dict[str, Any]:
        subscription = self._request(
            "cancel subscription", stripe.Subscription.cancel, subscription_id
        )
        return _to_dict(subscription)

    async def list_subscriptions_for_customer(
        self,
        customer_id: str,
        status: str = "all",
        limit: int = SUBSCRIPTION_LIST_LIMIT,
    ) -> list[dict[str, Any]]:
        subscriptions = self._request(
            "list subscriptions",
            stripe.Subscription.list,
            customer=customer_id,
            status=status,
            limit=limit,
        )
        return [_to_dict(subscription) for subscription in subscriptions["data"]]

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify the signature and return the event as plain JSON data."""
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise InvalidWebhookSignatureError(str(e)) from e
        return json.loads(payload)
