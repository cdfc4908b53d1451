"""BillingService: Stripe customers, subscriptions, checkout and portal sessions.

Responsibilities:
- Idempotent Stripe customer creation (once per user, per-user Redis lock)
- Free-tier subscription bootstrap with price fallback
- One-subscription-per-user mirror: insert, replace (delete-then-insert), delete
- Hosted Checkout and Customer Portal hand-offs
- Applying Stripe subscription state from webhooks
"""

import hashlib
import json
import uuid
from dataclasses import dataclass
from uuid import UUID

import stripe
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saaskit.core.config import get_settings
from saaskit.core.exceptions import (
    OnboardingIncompleteError,
    PlanNotFoundError,
    StripeCustomerNotCreatedError,
    StripeSomethingWentWrongError,
    SubscriptionExistsError,
    SubscriptionNotFoundError,
)
from saaskit.core.locking import DistributedLock, get_lock
from saaskit.db.models.plan import Plan
from saaskit.db.models.subscription import Subscription
from saaskit.db.models.user import User
from saaskit.domain.pricing import DEFAULT_PLAN_KEY, Currency, Interval, PlanKey, resolve_price
from saaskit.integrations.stripe_api import SubscriptionSnapshot, configure_stripe, list_all

logger = structlog.get_logger(__name__)

# Subscription statuses that entitle the customer to the plan
LIVE_STATUSES = frozenset({"active", "trialing"})


def _idempotency_key(prefix: str, user_id: UUID, params: dict) -> str:
    """Stripe rejects a reused key whose parameters changed, so the key covers them."""
    digest = hashlib.sha256(json.dumps(params, sort_keys=True).encode()).hexdigest()[:16]
    return f"{prefix}-{user_id}-{digest}"


@dataclass(frozen=True)
class CustomerAccount:
    """A user resolved from a Stripe customer id, with its subscription and plan key."""

    user: User
    subscription: Subscription
    plan_key: str


class BillingService:
    """Service layer for Stripe billing."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock: DistributedLock | None = None,
    ):
        self.session_factory = session_factory
        self.lock = lock or get_lock()

    # ── Plans ────────────────────────────────────────────────────────

    async def _get_plan_by_key(self, session: AsyncSession, key: str) -> Plan | None:
        result = await session.execute(select(Plan).where(Plan.key == key).order_by(Plan.id).limit(1))
        return result.scalar_one_or_none()

    async def get_default_plan(self) -> Plan:
        async with self.session_factory() as session:
            plan = await self._get_plan_by_key(session, DEFAULT_PLAN_KEY.value)
        if plan is None:
            raise PlanNotFoundError("Default plan not found. Sync Stripe products first.")
        return plan

    async def get_active_plans(self) -> dict[str, Plan]:
        """Return the free and pro plans, plus business when one exists.

        Raises:
            PlanNotFoundError: If the free or pro plan is missing
        """
        plans: dict[str, Plan] = {}
        async with self.session_factory() as session:
            for key in PlanKey:
                plan = await self._get_plan_by_key(session, key.value)
                if plan is not None:
                    plans[key.value] = plan

        if PlanKey.FREE.value not in plans or PlanKey.PRO.value not in plans:
            raise PlanNotFoundError()
        return plans

    # ── Customers ────────────────────────────────────────────────────

    async def create_customer(self, user_id: UUID, currency: Currency | str) -> str:
        """Create the user's Stripe customer and free subscription.

        No-op when the user already has a customer id.

        Returns:
            The user's Stripe customer id

        Raises:
            StripeCustomerNotCreatedError: If the user is missing or Stripe rejects the customer
        """
        user = await self._get_user(user_id)
        if user is None:
            raise StripeCustomerNotCreatedError("User not found")
        if user.customer_id:
            logger.info("stripe_customer_exists", user_id=str(user_id))
            return user.customer_id

        async with self.lock.lock(f"stripe-customer:{user_id}", owner=uuid.uuid4().hex):
            # Re-check under the lock: a concurrent request may have finished first
            user = await self._get_user(user_id)
            if user is None:
                raise StripeCustomerNotCreatedError("User not found")
            if user.customer_id:
                return user.customer_id

            # Fail before touching Stripe if the catalog was never synced
            await self.get_default_plan()

            configure_stripe()
            params = {
                k: v
                for k, v in {
                    "email": user.email,
                    "name": user.username,
                    "metadata": {"user_id": str(user.id), "clerk_user_id": user.clerk_user_id},
                }.items()
                if v is not None
            }
            try:
                customer = await stripe.Customer.create_async(
                    **params,
                    idempotency_key=_idempotency_key("customer-create", user.id, params),
                )
            except stripe.StripeError as exc:
                logger.error("stripe_customer_create_failed", user_id=str(user_id), error=str(exc))
                raise StripeCustomerNotCreatedError() from exc

            if not customer:
                raise StripeCustomerNotCreatedError()

            logger.info("stripe_customer_created", user_id=str(user_id), customer_id=customer.id)
            await self.create_free_subscription(user.id, customer.id, currency)

        return customer.id

    async def _get_user(self, user_id: UUID) -> User | None:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def get_user_by_customer_id(self, customer_id: str) -> CustomerAccount:
        """Resolve a Stripe customer to the local user, subscription and plan key.

        Raises:
            StripeSomethingWentWrongError: If any of the three is missing
        """
        async with self.session_factory() as session:
            user = (
                await session.execute(select(User).where(User.customer_id == customer_id))
            ).scalar_one_or_none()
            if user is None:
                raise StripeSomethingWentWrongError("No user for Stripe customer")

            subscription = await self._get_subscription_for_user(session, user.id)
            if subscription is None:
                raise StripeSomethingWentWrongError("No subscription for Stripe customer")

            plan = await session.get(Plan, subscription.plan_id)
            if plan is None:
                raise StripeSomethingWentWrongError("Subscription plan is missing")

        return CustomerAccount(user=user, subscription=subscription, plan_key=plan.key)

    # ── Subscriptions ────────────────────────────────────────────────

    async def _get_subscription_for_user(self, session: AsyncSession, user_id: UUID) -> Subscription | None:
        result = await session.execute(select(Subscription).where(Subscription.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_user_subscription(self, user_id: UUID) -> tuple[Subscription, Plan] | None:
        async with self.session_factory() as session:
            subscription = await self._get_subscription_for_user(session, user_id)
            if subscription is None:
                return None
            plan = await session.get(Plan, subscription.plan_id)
        if plan is None:
            return None
        return subscription, plan

    @staticmethod
    def _subscription_row(user_id: UUID, plan_id: int, snapshot: SubscriptionSnapshot) -> Subscription:
        return Subscription(
            user_id=user_id,
            plan_id=plan_id,
            price_stripe_id=snapshot.price_stripe_id,
            stripe_id=snapshot.stripe_id,
            currency=snapshot.currency,
            interval=snapshot.interval,
            status=snapshot.status,
            current_period_start=snapshot.current_period_start,
            current_period_end=snapshot.current_period_end,
            cancel_at_period_end=snapshot.cancel_at_period_end,
        )

    async def _insert_subscription(
        self,
        session: AsyncSession,
        user_id: UUID,
        plan_id: int,
        snapshot: SubscriptionSnapshot,
    ) -> Subscription:
        if await self._get_subscription_for_user(session, user_id) is not None:
            raise SubscriptionExistsError()
        subscription = self._subscription_row(user_id, plan_id, snapshot)
        session.add(subscription)
        return subscription

    async def insert_subscription(self, user_id: UUID, plan_id: int, snapshot: SubscriptionSnapshot) -> Subscription:
        """Insert the user's subscription record.

        Raises:
            SubscriptionExistsError: If the user already has one
        """
        async with self.session_factory() as session:
            subscription = await self._insert_subscription(session, user_id, plan_id, snapshot)
            await session.commit()
            await session.refresh(subscription)
        return subscription

    async def create_free_subscription(self, user_id: UUID, customer_id: str, currency: Currency | str) -> Subscription:
        """Subscribe a new customer to the default plan's yearly price and record it.

        The price degrades through the interval and currency fallbacks when
        the yearly price in the requested currency is absent. The customer id
        is stored on the user in the same transaction as the subscription.
        """
        plan = await self.get_default_plan()
        price = resolve_price(plan.prices, Interval.YEAR, currency, plan.key)
        if not price.exact:
            logger.info(
                "free_subscription_price_fallback",
                requested_currency=str(currency),
                interval=price.interval.value,
                currency=price.currency.value,
            )

        configure_stripe()
        try:
            stripe_subscription = await stripe.Subscription.create_async(
                customer=customer_id,
                items=[{"price": price.stripe_id}],
                metadata={"user_id": str(user_id)},
                idempotency_key=f"free-subscription-{user_id}",
            )
        except stripe.StripeError as exc:
            logger.error(
                "free_subscription_create_failed",
                user_id=str(user_id),
                customer_id=customer_id,
                error=str(exc),
            )
            raise StripeSomethingWentWrongError() from exc
        if not stripe_subscription:
            raise StripeSomethingWentWrongError()

        snapshot = SubscriptionSnapshot.from_stripe(stripe_subscription)

        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise StripeSomethingWentWrongError("User not found")
            subscription = await self._insert_subscription(session, user_id, plan.id, snapshot)
            user.customer_id = customer_id
            await session.commit()
            await session.refresh(subscription)

        logger.info("free_subscription_created", user_id=str(user_id), subscription_id=snapshot.stripe_id)
        return subscription

    async def replace_subscription(
        self,
        user_id: UUID,
        stripe_subscription_id: str,
        snapshot: SubscriptionSnapshot,
    ) -> Subscription:
        """Replace the user's subscription record within one transaction.

        Raises:
            SubscriptionNotFoundError: If the user has no subscription to replace
            PlanNotFoundError: If no plan matches the snapshot's product
        """
        async with self.session_factory() as session:
            current = await self._get_subscription_for_user(session, user_id)
            if current is None:
                raise SubscriptionNotFoundError()

            plan = (
                await session.execute(select(Plan).where(Plan.stripe_id == snapshot.product_id))
            ).scalar_one_or_none()
            if plan is None:
                raise PlanNotFoundError(f"No plan for Stripe product {snapshot.product_id}")

            await session.delete(current)
            # Flush the delete first: user_id is unique
            await session.flush()

            replacement = self._subscription_row(user_id, plan.id, snapshot)
            replacement.stripe_id = stripe_subscription_id
            session.add(replacement)
            await session.commit()
            await session.refresh(replacement)

        logger.info(
            "subscription_replaced",
            user_id=str(user_id),
            subscription_id=stripe_subscription_id,
            plan_key=plan.key,
            status=snapshot.status,
        )
        return replacement

    async def delete_subscription(self, stripe_subscription_id: str) -> None:
        """Delete the subscription record with this Stripe id.

        Raises:
            SubscriptionNotFoundError: If no such record exists
        """
        async with self.session_factory() as session:
            subscription = (
                await session.execute(select(Subscription).where(Subscription.stripe_id == stripe_subscription_id))
            ).scalar_one_or_none()
            if subscription is None:
                raise SubscriptionNotFoundError()
            await session.delete(subscription)
            await session.commit()

        logger.info("subscription_deleted", subscription_id=stripe_subscription_id)

    async def sync_subscription_from_stripe(self, stripe_subscription: dict) -> Subscription | None:
        """Mirror a Stripe subscription onto its customer's local record.

        Replaces the existing record, or inserts one when the user has none yet.
        Unknown customers are logged and ignored, as are events about another
        of the customer's subscriptions that would not supersede the current one.
        """
        snapshot = SubscriptionSnapshot.from_stripe(stripe_subscription)
        if not snapshot.customer_id:
            logger.warning("subscription_sync_missing_customer", subscription_id=snapshot.stripe_id)
            return None

        async with self.session_factory() as session:
            user = (
                await session.execute(select(User).where(User.customer_id == snapshot.customer_id))
            ).scalar_one_or_none()
            if user is None:
                logger.warning("subscription_sync_unknown_customer", customer_id=snapshot.customer_id)
                return None
            current = await self._get_subscription_for_user(session, user.id)
            current_plan = await session.get(Plan, current.plan_id) if current is not None else None

        if current is not None:
            if current.stripe_id != snapshot.stripe_id:
                plan = await self._find_plan_for_product(snapshot.product_id)
                if not self._supersedes(current, current_plan, snapshot, plan):
                    logger.info(
                        "subscription_sync_stale_event",
                        user_id=str(user.id),
                        current_subscription_id=current.stripe_id,
                        subscription_id=snapshot.stripe_id,
                        status=snapshot.status,
                    )
                    return None
            return await self.replace_subscription(user.id, snapshot.stripe_id, snapshot)

        plan = await self._find_plan_for_product(snapshot.product_id)
        return await self.insert_subscription(user.id, plan.id, snapshot)

    @staticmethod
    def _supersedes(
        current: Subscription,
        current_plan: Plan | None,
        snapshot: SubscriptionSnapshot,
        plan: Plan,
    ) -> bool:
        """Whether a different subscription of the same customer should take over the record."""
        if snapshot.status not in LIVE_STATUSES:
            return False
        if current.status not in LIVE_STATUSES:
            return True
        # A leftover free subscription never displaces a live paid one
        if plan.key == PlanKey.FREE and current_plan is not None and current_plan.key != PlanKey.FREE:
            return False
        return snapshot.current_period_start >= (current.current_period_start or 0)

    async def _find_plan_for_product(self, product_id: str) -> Plan:
        async with self.session_factory() as session:
            plan = (await session.execute(select(Plan).where(Plan.stripe_id == product_id))).scalar_one_or_none()
        if plan is None:
            raise PlanNotFoundError(f"No plan for Stripe product {product_id}")
        return plan

    async def cancel_user_subscriptions(self, customer_id: str | None) -> int:
        """Cancel every live Stripe subscription of a customer. Returns the count."""
        if not customer_id:
            return 0

        configure_stripe()
        subscriptions = await list_all(stripe.Subscription.list_async, customer=customer_id)
        for subscription in subscriptions:
            await stripe.Subscription.cancel_async(subscription["id"])

        logger.info("stripe_subscriptions_cancelled", customer_id=customer_id, count=len(subscriptions))
        return len(subscriptions)

    # ── Hosted sessions ──────────────────────────────────────────────

    async def create_checkout(
        self,
        user: User,
        plan_id: int,
        interval: Interval | str,
        currency: Currency | str,
    ) -> str | None:
        """Create a Checkout session for upgrading from the free plan.

        Returns:
            The Checkout URL, or None when the user is already on a paid plan
            (paid plans are managed in the customer portal)

        Raises:
            OnboardingIncompleteError: If the user has no Stripe customer yet
            SubscriptionNotFoundError: If the user has no current subscription
            PlanNotFoundError: If plan_id does not exist
            PriceNotConfiguredError: If the target plan has no usable price
        """
        if not user.customer_id:
            raise OnboardingIncompleteError()

        async with self.session_factory() as session:
            current = await self._get_subscription_for_user(session, user.id)
            if current is None:
                raise SubscriptionNotFoundError()
            current_plan = await session.get(Plan, current.plan_id)
            new_plan = await session.get(Plan, plan_id)

        if current_plan is None:
            raise StripeSomethingWentWrongError("Current subscription plan is missing")
        if new_plan is None:
            raise PlanNotFoundError()

        if current_plan.key != PlanKey.FREE:
            logger.info("checkout_skipped_paid_plan", user_id=str(user.id), plan_key=current_plan.key)
            return None

        price = resolve_price(new_plan.prices, interval, currency, new_plan.key)
        if not price.exact:
            logger.info(
                "checkout_price_fallback",
                plan_key=new_plan.key,
                requested_interval=str(interval),
                requested_currency=str(currency),
                interval=price.interval.value,
                currency=price.currency.value,
            )

        settings = get_settings()
        configure_stripe()

        checkout = await stripe.checkout.Session.create_async(
            customer=user.customer_id,
            line_items=[{"price": price.stripe_id, "quantity": 1}],
            mode="subscription",
            payment_method_types=["card"],
            success_url=f"{settings.site_url}/dashboard/checkout",
            cancel_url=f"{settings.site_url}/dashboard/settings/billing",
            metadata={"user_id": str(user.id), "plan_key": new_plan.key},
        )
        if not checkout:
            raise StripeSomethingWentWrongError()

        logger.info("checkout_session_created", user_id=str(user.id), plan_key=new_plan.key)
        return checkout.url or None

    async def create_customer_portal(self, user: User) -> str:
        """Create a Customer Portal session and return its URL.

        Raises:
            OnboardingIncompleteError: If the user has no Stripe customer yet
        """
        if not user.customer_id:
            raise OnboardingIncompleteError()

        settings = get_settings()
        configure_stripe()

        portal = await stripe.billing_portal.Session.create_async(
            customer=user.customer_id,
            return_url=f"{settings.site_url}/dashboard/settings/billing",
        )
        if not portal:
            raise StripeSomethingWentWrongError()
        return portal.url

    # ── Webhook events ───────────────────────────────────────────────

    async def handle_checkout_completed(self, session_data: dict) -> None:
        """Pull the new subscription from Stripe and mirror it locally."""
        subscription_id = session_data.get("subscription")
        if not subscription_id:
            logger.warning("checkout_completed_missing_subscription", session_id=session_data.get("id"))
            return

        configure_stripe()
        stripe_subscription = await stripe.Subscription.retrieve_async(subscription_id)
        await self.sync_subscription_from_stripe(stripe_subscription)

    async def handle_subscription_updated(self, subscription: dict) -> None:
        await self.sync_subscription_from_stripe(subscription)

    async def handle_subscription_deleted(self, subscription: dict) -> None:
        try:
            await self.delete_subscription(subscription["id"])
        except SubscriptionNotFoundError:
            logger.warning("subscription_deleted_unknown", subscription_id=subscription.get("id"))
