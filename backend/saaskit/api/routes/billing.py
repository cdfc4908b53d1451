"""Billing routes: plans, catalog sync, Checkout, Customer Portal and webhooks."""

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from saaskit.api.deps import get_billing_service
from saaskit.core.auth import ClerkUser, get_current_user, require_admin
from saaskit.core.config import get_settings
from saaskit.db.base import get_session_factory
from saaskit.db.models.plan import Plan
from saaskit.db.models.stripe_event import StripeWebhookEvent
from saaskit.db.models.user import User
from saaskit.domain.pricing import PlanKey
from saaskit.schemas.billing import (
    ActivePlansResponse,
    CatalogSyncResponse,
    CheckoutRequest,
    CheckoutResponse,
    PlanResponse,
    PortalResponse,
)
from saaskit.services.billing_service import BillingService
from saaskit.services.catalog_sync import CatalogSync

logger = structlog.get_logger(__name__)

router = APIRouter()


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        key=plan.key,
        stripe_id=plan.stripe_id,
        name=plan.name,
        description=plan.description or "",
        prices=plan.prices or {},
    )


async def _claim_event(event: dict) -> bool:
    """Return True if the event is new (now claimed), False for a redelivery."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            session.add(
                StripeWebhookEvent(
                    event_id=event["id"],
                    event_type=event["type"],
                    livemode=bool(event.get("livemode")),
                )
            )
            await session.commit()
            return True
        except IntegrityError:
            await session.rollback()
            return False


async def _release_event(event_id: str) -> None:
    """Drop a claim so Stripe's retry of a failed delivery is processed."""
    factory = get_session_factory()
    async with factory() as session:
        claimed = await session.get(StripeWebhookEvent, event_id)
        if claimed is not None:
            await session.delete(claimed)
            await session.commit()


# ── Endpoints ───────────────────────────────────────────────────────


@router.get("/billing/plans", response_model=ActivePlansResponse)
async def get_active_plans(billing: BillingService = Depends(get_billing_service)):
    """Public price table: free and pro, plus business when configured."""
    plans = await billing.get_active_plans()
    business = plans.get(PlanKey.BUSINESS.value)
    return ActivePlansResponse(
        free=_plan_response(plans[PlanKey.FREE.value]),
        pro=_plan_response(plans[PlanKey.PRO.value]),
        business=_plan_response(business) if business else None,
    )


@router.post("/billing/sync", response_model=CatalogSyncResponse)
async def sync_catalog(admin: ClerkUser = Depends(require_admin)):
    """Pull active Stripe products and prices into the plans table."""
    logger.info("catalog_sync_requested", admin_user_id=admin.user_id)
    result = await CatalogSync(get_session_factory()).run()
    return CatalogSyncResponse(**result.as_dict())


@router.post("/billing/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    billing: BillingService = Depends(get_billing_service),
):
    """Create a Stripe Checkout session. checkout_url is null for users on a paid plan."""
    url = await billing.create_checkout(user, body.plan_id, body.interval, body.currency)
    return CheckoutResponse(checkout_url=url)


@router.post("/billing/portal", response_model=PortalResponse)
async def create_portal_session(
    user: User = Depends(get_current_user),
    billing: BillingService = Depends(get_billing_service),
):
    return PortalResponse(portal_url=await billing.create_customer_portal(user))


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    billing: BillingService = Depends(get_billing_service),
):
    """Handle Stripe webhook events with signature verification."""
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Stripe webhook endpoint is not configured")

    body = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    try:
        event = stripe.Webhook.construct_event(body, sig_header, settings.stripe_webhook_secret)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_type = event["type"]
    if not await _claim_event(event):
        logger.info("stripe_duplicate_event_ignored", event_id=event["id"])
        return {"status": "ok"}

    data = event["data"]["object"]
    logger.info("stripe_webhook_received", event_type=event_type, event_id=event["id"])

    try:
        if event_type == "checkout.session.completed":
            await billing.handle_checkout_completed(data)
        elif event_type == "customer.subscription.updated":
            await billing.handle_subscription_updated(data)
        elif event_type == "customer.subscription.deleted":
            await billing.handle_subscription_deleted(data)
        else:
            logger.debug("stripe_webhook_unhandled", event_type=event_type)
    except Exception:
        await _release_event(event["id"])
        raise

    return {"status": "ok"}
