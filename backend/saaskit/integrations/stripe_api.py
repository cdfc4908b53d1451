"""Stripe integration helpers.

This module provides:
- SDK configuration from settings (key, pinned API version, retries)
- Auto-pagination over async list endpoints
- Normalization of Stripe subscription objects into SubscriptionSnapshot

Stripe objects are dict subclasses and webhook payloads are plain dicts, so
everything here reads them through mapping access.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import stripe

from saaskit.core.config import get_settings
from saaskit.core.exceptions import StripeSomethingWentWrongError

PAGE_SIZE = 100


def configure_stripe() -> None:
    """Configure the stripe module with the secret key and pinned API version."""
    settings = get_settings()
    stripe.api_key = settings.stripe_secret_key
    stripe.api_version = settings.stripe_api_version
    stripe.max_network_retries = settings.stripe_max_network_retries


async def list_all(list_fn: Callable[..., Awaitable[Any]], **params: Any) -> list[Any]:
    """Collect every object from a Stripe list endpoint, following has_more cursors."""
    items: list[Any] = []
    params.setdefault("limit", PAGE_SIZE)

    while True:
        page = await list_fn(**params)
        data = list(page["data"])
        items.extend(data)
        if not page.get("has_more") or not data:
            return items
        params["starting_after"] = data[-1]["id"]


def _object_id(value: Any) -> str | None:
    """Return the id of a possibly-expanded Stripe reference."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """The subscription fields mirrored into the local subscriptions table."""

    stripe_id: str
    customer_id: str | None
    product_id: str
    price_stripe_id: str
    currency: str
    interval: str
    status: str
    current_period_start: int
    current_period_end: int
    cancel_at_period_end: bool

    @classmethod
    def from_stripe(cls, subscription: Mapping[str, Any]) -> "SubscriptionSnapshot":
        """Build a snapshot from a Stripe subscription object or webhook payload.

        Raises:
            StripeSomethingWentWrongError: If the subscription has no priced item
        """
        try:
            item = subscription["items"]["data"][0]
            price = item["price"]
        except (KeyError, IndexError, TypeError) as exc:
            raise StripeSomethingWentWrongError("Stripe subscription has no price item") from exc

        # Newer API versions report the billing period on the item
        period_start = subscription.get("current_period_start") or item.get("current_period_start") or 0
        period_end = subscription.get("current_period_end") or item.get("current_period_end") or 0

        return cls(
            stripe_id=subscription["id"],
            customer_id=_object_id(subscription.get("customer")),
            product_id=_object_id(price.get("product")) or "",
            price_stripe_id=price["id"],
            currency=(price.get("currency") or subscription.get("currency") or "").lower(),
            interval=(price.get("recurring") or {}).get("interval", ""),
            status=subscription.get("status") or "",
            current_period_start=int(period_start),
            current_period_end=int(period_end),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        )
