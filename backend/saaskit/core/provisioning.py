"""User provisioning on first login.

Idempotent: creates the local User row for a new Clerk user. Concurrent first
requests race on the unique clerk_user_id; the loser re-reads the winner's row.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from saaskit.db.base import get_session_factory
from saaskit.db.models.user import User


async def provision_user_on_first_login(
    clerk_user_id: str,
    jwt_claims: dict,
    session: AsyncSession | None = None,
) -> User:
    """Provision a new user on first login.

    Repeat calls for the same user_id are no-ops.

    Args:
        clerk_user_id: Clerk user ID from JWT
        jwt_claims: JWT claims dict containing email, name, image_url, etc.
        session: Optional AsyncSession for testing (if None, creates new session)

    Returns:
        User instance (either newly created or existing)
    """
    if session is not None:
        return await _do_provision(clerk_user_id, jwt_claims, session)

    factory = get_session_factory()
    async with factory() as session:
        return await _do_provision(clerk_user_id, jwt_claims, session)


async def _do_provision(clerk_user_id: str, jwt_claims: dict, session: AsyncSession) -> User:
    result = await session.execute(select(User).where(User.clerk_user_id == clerk_user_id))
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing

    user = User(
        clerk_user_id=clerk_user_id,
        email=jwt_claims.get("email") or None,
        name=jwt_claims.get("name") or None,
        image=jwt_claims.get("image_url") or None,
    )
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        # Concurrent first request already inserted the row
        await session.rollback()
        result = await session.execute(select(User).where(User.clerk_user_id == clerk_user_id))
        return result.scalar_one()

    await session.refresh(user)
    return user
