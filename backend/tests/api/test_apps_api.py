"""Tests for the apps API: CRUD, key regeneration and tenant isolation."""

import re
import uuid

import pytest

from saaskit.db.models.user import User

pytestmark = pytest.mark.integration

_KEY_RE = re.compile(r"^sk_[a-z0-9]{26}$")


@pytest.fixture
async def intruder(session_factory) -> User:
    async with session_factory() as session:
        row = User(clerk_user_id="user_intruder")
        session.add(row)
        await session.commit()
        await session.refresh(row)
    return row


async def test_create_list_update_delete(client, login, user):
    login(user)

    created = await client.post("/api/apps/", json={"name": "Webhook relay", "description": "Relays events"})
    assert created.status_code == 201
    app = created.json()
    assert app["status"] == "active"
    assert _KEY_RE.match(app["api_key"])

    listed = await client.get("/api/apps/")
    assert [a["id"] for a in listed.json()] == [app["id"]]

    patched = await client.patch(f"/api/apps/{app['id']}", json={"status": "inactive"})
    assert patched.status_code == 200
    assert patched.json()["status"] == "inactive"
    assert patched.json()["name"] == "Webhook relay"

    deleted = await client.delete(f"/api/apps/{app['id']}")
    assert deleted.status_code == 204
    assert (await client.get("/api/apps/")).json() == []


async def test_regenerate_api_key(client, login, user):
    login(user)
    app = (await client.post("/api/apps/", json={"name": "Rotating"})).json()

    response = await client.post(f"/api/apps/{app['id']}/api-key")

    assert response.status_code == 200
    new_key = response.json()["api_key"]
    assert new_key != app["api_key"]
    assert _KEY_RE.match(new_key)


async def test_other_tenant_gets_404(client, login, user, intruder):
    login(user)
    app = (await client.post("/api/apps/", json={"name": "Private"})).json()

    login(intruder)
    assert (await client.get("/api/apps/")).json() == []

    response = await client.patch(f"/api/apps/{app['id']}", json={"name": "Mine now"})
    assert response.status_code == 404
    assert response.json()["code"] == "app_not_found"

    assert (await client.post(f"/api/apps/{app['id']}/api-key")).status_code == 404
    assert (await client.delete(f"/api/apps/{app['id']}")).status_code == 404


async def test_unknown_app_is_404(client, login, user):
    login(user)
    response = await client.delete(f"/api/apps/{uuid.uuid4()}")
    assert response.status_code == 404


async def test_validation(client, login, user):
    login(user)
    assert (await client.post("/api/apps/", json={"name": ""})).status_code == 422

    app = (await client.post("/api/apps/", json={"name": "Valid"})).json()
    response = await client.patch(f"/api/apps/{app['id']}", json={"status": "paused"})
    assert response.status_code == 422


async def test_requires_auth(client):
    assert (await client.get("/api/apps/")).status_code == 401
