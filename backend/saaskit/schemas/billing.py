"""Billing Pydantic schemas: plans, checkout and portal contracts."""

from pydantic import BaseModel

from saaskit.domain.pricing import Currency, Interval


class PriceCell(BaseModel):
    stripe_id: str
    amount: int


class PlanResponse(BaseModel):
    id: int
    key: str
    stripe_id: str
    name: str
    description: str
    # {"month": {"usd": {...}}, "year": {...}}
    prices: dict[str, dict[str, PriceCell]]


class ActivePlansResponse(BaseModel):
    free: PlanResponse
    pro: PlanResponse
    business: PlanResponse | None = None


class CheckoutRequest(BaseModel):
    plan_id: int
    interval: Interval
    currency: Currency


class CheckoutResponse(BaseModel):
    # None when the user is already on a paid plan
    checkout_url: str | None


class PortalResponse(BaseModel):
    portal_url: str


class CatalogSyncResponse(BaseModel):
    inserted: int
    updated: int
    skipped: int
