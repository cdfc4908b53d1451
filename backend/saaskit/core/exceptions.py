class SaaSKitError(Exception):
    """Base exception for the SaaS Kit backend.

    Subclasses carry the HTTP status and a stable machine-readable code that
    the global exception handler returns to clients.
    """

    status_code = 500
    code = "internal_error"
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class StripeCustomerNotCreatedError(SaaSKitError):
    """Raised when a Stripe customer could not be created for a user."""

    status_code = 502
    code = "stripe_customer_not_created"
    default_message = "Stripe customer could not be created"


class StripeSomethingWentWrongError(SaaSKitError):
    """Raised when billing state is inconsistent or Stripe returned nothing usable."""

    status_code = 500
    code = "stripe_something_went_wrong"
    default_message = "Something went wrong while talking to Stripe"


class PriceNotConfiguredError(SaaSKitError):
    """Raised when a plan has no usable price in any interval or currency."""

    status_code = 409
    code = "price_not_configured"

    def __init__(self, plan_key: str | None = None):
        self.plan_key = plan_key
        label = f"plan '{plan_key}'" if plan_key else "this plan"
        super().__init__(f"No prices configured for {label}. Sync Stripe products and try again.")


class PlanNotFoundError(SaaSKitError):
    """Raised when a plan is missing from the local catalog."""

    status_code = 404
    code = "plan_not_found"
    default_message = "Plan not found"


class OnboardingIncompleteError(SaaSKitError):
    """Raised when a billing action needs a Stripe customer the user does not have yet."""

    status_code = 409
    code = "onboarding_incomplete"
    default_message = "Complete onboarding before managing billing"


class SubscriptionExistsError(SaaSKitError):
    """Raised when inserting a second subscription for the same user."""

    status_code = 409
    code = "subscription_exists"
    default_message = "Subscription already exists"


class SubscriptionNotFoundError(SaaSKitError):
    """Raised when an expected subscription record is missing."""

    status_code = 404
    code = "subscription_not_found"
    default_message = "Subscription not found"


class UserNotFoundError(SaaSKitError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


class AppNotFoundError(SaaSKitError):
    """Raised for missing apps and apps owned by another user alike."""

    status_code = 404
    code = "app_not_found"
    default_message = "App not found or unauthorized"


class StorageNotConfiguredError(SaaSKitError):
    status_code = 503
    code = "storage_not_configured"
    default_message = "Avatar storage is not configured"


class LockNotAcquiredError(SaaSKitError):
    """Raised when a distributed lock is still held elsewhere after the wait timeout."""

    status_code = 409
    code = "operation_in_progress"

    def __init__(self, name: str):
        self.name = name
        super().__init__("Another request is already processing this operation. Try again shortly.")


class InvalidAvatarKeyError(SaaSKitError):
    status_code = 400
    code = "invalid_avatar_key"
    default_message = "Avatar key does not belong to this user"
