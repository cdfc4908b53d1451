"""AccountService: profile, onboarding, avatar references and account deletion."""

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saaskit.core.exceptions import InvalidAvatarKeyError, SaaSKitError, UserNotFoundError
from saaskit.db.models.subscription import Subscription
from saaskit.db.models.user import User
from saaskit.domain.pricing import Currency
from saaskit.services.app_service import AppService
from saaskit.services.billing_service import BillingService
from saaskit.services.storage import AvatarStorage, UploadTarget

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UserProfile:
    """The current user as shown to the dashboard."""

    user: User
    avatar_url: str | None
    subscription: Subscription | None
    plan_key: str | None


class AccountService:
    """Service layer for the signed-in user's own account."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        billing: BillingService,
        storage: AvatarStorage,
    ):
        self.session_factory = session_factory
        self.billing = billing
        self.storage = storage

    async def get_profile(self, user: User) -> UserProfile:
        """Return the user with a resolved avatar URL and plan-tagged subscription.

        An uploaded avatar wins over the identity provider's image URL.
        """
        current = await self.billing.get_user_subscription(user.id)
        subscription, plan = current if current else (None, None)

        return UserProfile(
            user=user,
            avatar_url=self.storage.get_url(user.image_key) or user.image,
            subscription=subscription,
            plan_key=plan.key if plan else None,
        )

    async def _update(self, user_id: UUID, **values) -> User:
        async with self.session_factory() as session:
            db_user = await session.get(User, user_id)
            if db_user is None:
                raise UserNotFoundError()
            for attr, value in values.items():
                setattr(db_user, attr, value)
            await session.commit()
            await session.refresh(db_user)
        return db_user

    async def update_username(self, user: User, username: str) -> User:
        return await self._update(user.id, username=username)

    async def complete_onboarding(self, user: User, username: str) -> bool:
        """Store the username. Returns True when a Stripe customer still has to be created."""
        updated = await self._update(user.id, username=username)
        return not updated.customer_id

    async def create_customer_in_background(self, user_id: UUID, currency: Currency | str) -> None:
        """Background-task entry point for customer creation after onboarding."""
        try:
            await self.billing.create_customer(user_id, currency)
        except SaaSKitError as exc:
            logger.error(
                "onboarding_customer_creation_failed",
                user_id=str(user_id),
                code=exc.code,
                error=exc.message,
            )

    def generate_upload_url(self, user: User) -> UploadTarget:
        return self.storage.generate_upload_url(user.id)

    async def update_user_image(self, user: User, image_key: str) -> User:
        """Point the user's avatar at an uploaded object key and drop the previous one."""
        if not self.storage.owns_key(user.id, image_key):
            raise InvalidAvatarKeyError()
        previous = user.image_key
        updated = await self._update(user.id, image_key=image_key)
        if previous and previous != image_key:
            await self.storage.delete(previous)
        return updated

    async def remove_user_image(self, user: User) -> User:
        previous = user.image_key
        updated = await self._update(user.id, image_key=None, image=None)
        await self.storage.delete(previous)
        return updated

    async def delete_account(self, user: User) -> str | None:
        """Delete the user's subscription record, apps and the user itself.

        Returns:
            The Stripe customer id whose live subscriptions the caller must cancel,
            or None when the user never had a subscription
        """
        async with self.session_factory() as session:
            db_user = await session.get(User, user.id)
            if db_user is None:
                raise UserNotFoundError()

            subscription = (
                await session.execute(select(Subscription).where(Subscription.user_id == user.id))
            ).scalar_one_or_none()
            if subscription is None:
                logger.warning("account_delete_no_subscription", user_id=str(user.id))
            else:
                await session.delete(subscription)

            app_count = await AppService(self.session_factory).delete_user_apps(session, user.id)
            # Children go first: apps and subscriptions reference users.id
            await session.flush()
            image_key = db_user.image_key
            await session.delete(db_user)
            await session.commit()

        await self.storage.delete(image_key)
        logger.info("account_deleted", user_id=str(user.id), apps_deleted=app_count)
        return user.customer_id if subscription is not None else None
