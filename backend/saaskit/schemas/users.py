"""User/account Pydantic schemas."""

from pydantic import BaseModel, Field

from saaskit.domain.pricing import Currency


class SubscriptionResponse(BaseModel):
    plan_id: int
    plan_key: str
    price_stripe_id: str
    stripe_id: str
    currency: str
    interval: str
    status: str
    current_period_start: int
    current_period_end: int
    cancel_at_period_end: bool


class UserResponse(BaseModel):
    id: str
    name: str | None
    username: str | None
    email: str | None
    avatar_url: str | None
    customer_id: str | None
    subscription: SubscriptionResponse | None = None


class UsernameUpdate(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)


class OnboardingRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    currency: Currency = Currency.USD


class UploadUrlResponse(BaseModel):
    upload_url: str
    image_key: str


class ImageUpdate(BaseModel):
    image_key: str


class OnboardingResponse(BaseModel):
    username: str
    # True while the Stripe customer is being created in the background
    customer_pending: bool
