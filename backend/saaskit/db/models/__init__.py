"""Re-export all models so Base.metadata sees them."""

from saaskit.db.models.app import App
from saaskit.db.models.plan import Plan
from saaskit.db.models.stripe_event import StripeWebhookEvent
from saaskit.db.models.subscription import Subscription
from saaskit.db.models.user import User

__all__ = [
    "App",
    "Plan",
    "StripeWebhookEvent",
    "Subscription",
    "User",
]
