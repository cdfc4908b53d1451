"""AppService: tenant-scoped CRUD over apps and their API keys.

Every lookup filters by owner; a foreign app is indistinguishable from a
missing one.
"""

import secrets
import string
from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saaskit.core.config import get_settings
from saaskit.core.exceptions import AppNotFoundError
from saaskit.db.models.app import App

logger = structlog.get_logger(__name__)

_API_KEY_ALPHABET = string.ascii_lowercase + string.digits


def generate_api_key() -> str:
    """Return a new API key: configured prefix plus random lowercase alphanumerics."""
    settings = get_settings()
    body = "".join(secrets.choice(_API_KEY_ALPHABET) for _ in range(settings.api_key_length))
    return f"{settings.api_key_prefix}{body}"


class AppService:
    """Service layer for the apps resource."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _get_owned(self, session: AsyncSession, user_id: UUID, app_id: UUID) -> App:
        result = await session.execute(select(App).where(App.id == app_id, App.user_id == user_id))
        app = result.scalar_one_or_none()
        if app is None:
            raise AppNotFoundError()
        return app

    async def list_apps(self, user_id: UUID) -> list[App]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(App).where(App.user_id == user_id).order_by(App.created_at.desc())
            )
            return list(result.scalars().all())

    async def create_app(self, user_id: UUID, name: str, description: str | None = None) -> App:
        async with self.session_factory() as session:
            app = App(
                user_id=user_id,
                name=name,
                description=description,
                api_key=generate_api_key(),
                status="active",
            )
            session.add(app)
            await session.commit()
            await session.refresh(app)

        logger.info("app_created", user_id=str(user_id), app_id=str(app.id))
        return app

    async def update_app(
        self,
        user_id: UUID,
        app_id: UUID,
        name: str | None = None,
        description: str | None = None,
        status: str | None = None,
    ) -> App:
        """Apply the provided fields only; always bumps updated_at."""
        async with self.session_factory() as session:
            app = await self._get_owned(session, user_id, app_id)
            if name is not None:
                app.name = name
            if description is not None:
                app.description = description
            if status is not None:
                app.status = status
            app.updated_at = datetime.now(UTC)
            await session.commit()
            await session.refresh(app)
        return app

    async def delete_app(self, user_id: UUID, app_id: UUID) -> None:
        async with self.session_factory() as session:
            app = await self._get_owned(session, user_id, app_id)
            await session.delete(app)
            await session.commit()

        logger.info("app_deleted", user_id=str(user_id), app_id=str(app_id))

    async def regenerate_api_key(self, user_id: UUID, app_id: UUID) -> str:
        async with self.session_factory() as session:
            app = await self._get_owned(session, user_id, app_id)
            app.api_key = generate_api_key()
            app.updated_at = datetime.now(UTC)
            await session.commit()
            new_key = app.api_key

        logger.info("app_api_key_regenerated", user_id=str(user_id), app_id=str(app_id))
        return new_key

    async def delete_user_apps(self, session: AsyncSession, user_id: UUID) -> int:
        """Delete all apps of a user inside the caller's transaction. Returns the count."""
        result = await session.execute(select(App).where(App.user_id == user_id))
        apps = result.scalars().all()
        for app in apps:
            await session.delete(app)
        return len(apps)
