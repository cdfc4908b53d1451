"""Tests for tenant-scoped app CRUD and API key generation."""

import re
import uuid

import pytest

from saaskit.core.exceptions import AppNotFoundError
from saaskit.db.models.user import User
from saaskit.services.app_service import AppService, generate_api_key

pytestmark = pytest.mark.integration

_KEY_RE = re.compile(r"^sk_[a-z0-9]{26}$")


@pytest.fixture
def apps(session_factory) -> AppService:
    return AppService(session_factory)


@pytest.fixture
async def other_user(session_factory) -> User:
    async with session_factory() as session:
        row = User(clerk_user_id="user_other", email="other@example.com")
        session.add(row)
        await session.commit()
        await session.refresh(row)
    return row


def test_generated_key_format():
    keys = {generate_api_key() for _ in range(50)}
    assert all(_KEY_RE.match(key) for key in keys)
    assert len(keys) == 50


async def test_create_and_list(apps, user):
    created = await apps.create_app(user.id, "Billing bot", "Sends invoices")
    assert created.status == "active"
    assert _KEY_RE.match(created.api_key)

    listed = await apps.list_apps(user.id)
    assert [a.id for a in listed] == [created.id]
    assert listed[0].description == "Sends invoices"


async def test_list_is_tenant_scoped(apps, user, other_user):
    await apps.create_app(user.id, "Mine")
    await apps.create_app(other_user.id, "Theirs")

    assert [a.name for a in await apps.list_apps(user.id)] == ["Mine"]


async def test_partial_update(apps, user):
    created = await apps.create_app(user.id, "Original", "Keep me")
    updated = await apps.update_app(user.id, created.id, status="inactive")

    assert updated.status == "inactive"
    assert updated.name == "Original"
    assert updated.description == "Keep me"
    assert updated.updated_at >= created.updated_at


async def test_regenerate_key_changes_key(apps, user):
    created = await apps.create_app(user.id, "Rotating")
    new_key = await apps.regenerate_api_key(user.id, created.id)

    assert new_key != created.api_key
    assert _KEY_RE.match(new_key)
    assert (await apps.list_apps(user.id))[0].api_key == new_key


async def test_foreign_app_looks_missing(apps, user, other_user):
    theirs = await apps.create_app(other_user.id, "Theirs")

    with pytest.raises(AppNotFoundError):
        await apps.update_app(user.id, theirs.id, name="Stolen")
    with pytest.raises(AppNotFoundError):
        await apps.regenerate_api_key(user.id, theirs.id)
    with pytest.raises(AppNotFoundError):
        await apps.delete_app(user.id, theirs.id)

    assert len(await apps.list_apps(other_user.id)) == 1


async def test_delete(apps, user):
    created = await apps.create_app(user.id, "Short lived")
    await apps.delete_app(user.id, created.id)

    assert await apps.list_apps(user.id) == []
    with pytest.raises(AppNotFoundError):
        await apps.delete_app(user.id, created.id)


async def test_unknown_app_id(apps, user):
    with pytest.raises(AppNotFoundError):
        await apps.regenerate_api_key(user.id, uuid.uuid4())
