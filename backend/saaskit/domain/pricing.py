"""Plan pricing rules.

Pure domain functions over the plan price matrix:
    {interval: {currency: {"stripe_id": str, "amount": int}}}

resolve_price: degrades gracefully when the exact interval/currency is missing.
build_price_matrix: groups Stripe prices of one product into the matrix.
plan_key_for_product: derives the plan tier from a Stripe product name.

No DB access, no Stripe calls.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from saaskit.core.exceptions import PriceNotConfiguredError


class Currency(StrEnum):
    USD = "usd"
    EUR = "eur"
    VND = "vnd"


class Interval(StrEnum):
    MONTH = "month"
    YEAR = "year"


class PlanKey(StrEnum):
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


# Order tried after the requested currency
CURRENCY_FALLBACK_ORDER: tuple[Currency, ...] = (Currency.USD, Currency.EUR, Currency.VND)

DEFAULT_PLAN_KEY = PlanKey.FREE

_CURRENCY_CODES = frozenset(c.value for c in Currency)


@dataclass(frozen=True)
class ResolvedPrice:
    """A concrete price picked from a plan's price matrix."""

    interval: Interval
    currency: Currency
    stripe_id: str
    amount: int
    exact: bool


def empty_price_matrix() -> dict[str, dict[str, dict]]:
    return {interval.value: {} for interval in Interval}


def currency_chain(primary: Currency | str) -> list[Currency]:
    """Return the currencies to try, primary first, then USD, EUR, VND (deduplicated)."""
    chain = [Currency(primary)]
    for currency in CURRENCY_FALLBACK_ORDER:
        if currency not in chain:
            chain.append(currency)
    return chain


def _interval_chain(requested: Interval) -> list[Interval]:
    return [requested] + [i for i in Interval if i != requested]


def _usable(cell: Any) -> bool:
    return isinstance(cell, Mapping) and bool(cell.get("stripe_id"))


def resolve_price(
    prices: Mapping[str, Mapping[str, Any]] | None,
    interval: Interval | str,
    currency: Currency | str,
    plan_key: str | None = None,
) -> ResolvedPrice:
    """Pick the best available price for the requested interval and currency.

    Intervals are tried requested-first, then the other one. Within an
    interval the currency chain is tried (requested, USD, EUR, VND), which
    covers every supported currency. A cell is usable only if it has a
    non-empty stripe_id.

    Raises:
        PriceNotConfiguredError: If no usable cell exists anywhere in the matrix.
    """
    requested_interval = Interval(interval)
    requested_currency = Currency(currency)
    prices = prices or {}

    for candidate_interval in _interval_chain(requested_interval):
        by_currency = prices.get(candidate_interval.value) or {}

        for candidate_currency in currency_chain(requested_currency):
            cell = by_currency.get(candidate_currency.value)
            if _usable(cell):
                return ResolvedPrice(
                    interval=candidate_interval,
                    currency=candidate_currency,
                    stripe_id=cell["stripe_id"],
                    amount=int(cell.get("amount") or 0),
                    exact=candidate_interval == requested_interval and candidate_currency == requested_currency,
                )

    raise PriceNotConfiguredError(plan_key)


def plan_key_for_product(product_name: str) -> PlanKey:
    """Map a Stripe product name to a plan tier.

    Names containing "pro" are pro, else names containing "free" are free,
    anything else is business.
    """
    name = (product_name or "").lower()
    if "pro" in name:
        return PlanKey.PRO
    if "free" in name:
        return PlanKey.FREE
    return PlanKey.BUSINESS


def build_price_matrix(prices: Iterable[Mapping[str, Any]]) -> dict[str, dict[str, dict]]:
    """Group Stripe price objects of a single product by interval and currency.

    Skips one-off prices and intervals/currencies the plan schema does not
    model. A later price for the same cell overwrites an earlier one.
    """
    matrix = empty_price_matrix()

    for price in prices:
        recurring = price.get("recurring")
        if not recurring:
            continue

        interval = recurring.get("interval")
        currency = (price.get("currency") or "").lower()
        if interval not in matrix or currency not in _CURRENCY_CODES:
            continue

        matrix[interval][currency] = {
            "stripe_id": price["id"],
            "amount": price.get("unit_amount") or 0,
        }

    return matrix


def has_any_price(prices: Mapping[str, Mapping[str, Any]] | None) -> bool:
    return any(_usable(cell) for by_currency in (prices or {}).values() for cell in (by_currency or {}).values())
