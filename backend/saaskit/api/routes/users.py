"""Account routes for the signed-in user: profile, onboarding, avatar, deletion."""

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends

from saaskit.api.deps import get_account_service, get_billing_service
from saaskit.core.auth import get_current_user
from saaskit.db.models.user import User
from saaskit.schemas.users import (
    ImageUpdate,
    OnboardingRequest,
    OnboardingResponse,
    SubscriptionResponse,
    UploadUrlResponse,
    UsernameUpdate,
    UserResponse,
)
from saaskit.services.account_service import AccountService, UserProfile
from saaskit.services.billing_service import BillingService

logger = structlog.get_logger(__name__)

router = APIRouter()


def _to_response(profile: UserProfile) -> UserResponse:
    user = profile.user
    subscription = None
    if profile.subscription is not None:
        sub = profile.subscription
        subscription = SubscriptionResponse(
            plan_id=sub.plan_id,
            plan_key=profile.plan_key,
            price_stripe_id=sub.price_stripe_id,
            stripe_id=sub.stripe_id,
            currency=sub.currency,
            interval=sub.interval,
            status=sub.status,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
            cancel_at_period_end=sub.cancel_at_period_end,
        )
    return UserResponse(
        id=str(user.id),
        name=user.name,
        username=user.username,
        email=user.email,
        avatar_url=profile.avatar_url,
        customer_id=user.customer_id,
        subscription=subscription,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(
    user: User = Depends(get_current_user),
    account: AccountService = Depends(get_account_service),
):
    return _to_response(await account.get_profile(user))


@router.patch("/me/username", response_model=UserResponse)
async def update_username(
    body: UsernameUpdate,
    user: User = Depends(get_current_user),
    account: AccountService = Depends(get_account_service),
):
    updated = await account.update_username(user, body.username)
    return _to_response(await account.get_profile(updated))


@router.post("/me/onboarding", response_model=OnboardingResponse)
async def complete_onboarding(
    body: OnboardingRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    account: AccountService = Depends(get_account_service),
):
    """Store the username and create the Stripe customer after the response is sent."""
    needs_customer = await account.complete_onboarding(user, body.username)
    if needs_customer:
        background_tasks.add_task(account.create_customer_in_background, user.id, body.currency)
        logger.info("onboarding_customer_scheduled", user_id=str(user.id), currency=body.currency.value)

    return OnboardingResponse(username=body.username, customer_pending=needs_customer)


@router.post("/me/avatar/upload-url", response_model=UploadUrlResponse)
async def create_avatar_upload_url(
    user: User = Depends(get_current_user),
    account: AccountService = Depends(get_account_service),
):
    target = account.generate_upload_url(user)
    return UploadUrlResponse(upload_url=target.url, image_key=target.key)


@router.put("/me/avatar", response_model=UserResponse)
async def update_avatar(
    body: ImageUpdate,
    user: User = Depends(get_current_user),
    account: AccountService = Depends(get_account_service),
):
    updated = await account.update_user_image(user, body.image_key)
    return _to_response(await account.get_profile(updated))


@router.delete("/me/avatar", response_model=UserResponse)
async def remove_avatar(
    user: User = Depends(get_current_user),
    account: AccountService = Depends(get_account_service),
):
    updated = await account.remove_user_image(user)
    return _to_response(await account.get_profile(updated))


@router.delete("/me")
async def delete_me(
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    account: AccountService = Depends(get_account_service),
    billing: BillingService = Depends(get_billing_service),
):
    """Delete the account locally, then cancel live Stripe subscriptions in the background."""
    customer_id = await account.delete_account(user)
    if customer_id:
        background_tasks.add_task(billing.cancel_user_subscriptions, customer_id)

    return {"status": "deleted"}
