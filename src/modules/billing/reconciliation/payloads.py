"""Readers for the Stripe object shapes the engine consumes."""

from datetime import datetime
from typing import Any

from src.utils.time_helpers import from_unix_timestamp


def extract_base_item(subscription_data: dict[str, Any]) -> dict[str, Any] | None:
    """First licensed (non-metered) line item of a subscription."""
    items = (subscription_data.get("items") or {}).get("data") or []
    for item in items:
        price = item.get("price") or {}
        if (price.get("recurring") or {}).get("usage_type") != "metered":
            return item
    return None


def extract_price_id(subscription_data: dict[str, Any]) -> str | None:
    item = extract_base_item(subscription_data)
    if not item:
        return None
    return (item.get("price") or {}).get("id")


def extract_period(
    subscription_data: dict[str, Any],
) -> tuple[datetime | None, datetime | None]:
    """Billing period bounds.

    Newer Stripe API versions only expose the period on the subscription
    items, so fall back to the first item when the root has none.
    """
    period_start = subscription_data.get("current_period_start")
    period_end = subscription_data.get("current_period_end")

    if not period_start or not period_end:
        items = (subscription_data.get("items") or {}).get("data") or []
        if items:
            period_start = period_start or items[0].get("current_period_start")
            period_end = period_end or items[0].get("current_period_end")

    return from_unix_timestamp(period_start), from_unix_timestamp(period_end)


def extract_invoice_subscription_id(invoice_data: dict[str, Any]) -> str | None:
    subscription = invoice_data.get("subscription")
    if not subscription:
        parent = invoice_data.get("parent") or {}
        subscription = (parent.get("subscription_details") or {}).get("subscription")

    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription
