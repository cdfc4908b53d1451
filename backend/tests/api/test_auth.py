"""Tests for Clerk JWT authentication and first-login provisioning."""

import base64
import time
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock, patch

import jwt as pyjwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import func, select

from saaskit.core.auth import (
    ClerkUser,
    ClerkVerifier,
    _provisioned_cache,
    frontend_api_domain,
    require_admin,
    require_auth,
)
from saaskit.core.provisioning import provision_user_on_first_login
from saaskit.db.models.user import User

pytestmark = pytest.mark.unit

# ---------------------------------------------------------------------------
# RSA keypair generated once for entire test module
# ---------------------------------------------------------------------------
_private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
_public_key = _private_key.public_key()

_private_pem = _private_key.private_bytes(
    encoding=serialization.Encoding.PEM,
    format=serialization.PrivateFormat.PKCS8,
    encryption_algorithm=serialization.NoEncryption(),
)

_TEST_CLERK_PK = "pk_test_c3VwZXJiLXRpY2stNDUuY2xlcmsuYWNjb3VudHMuZGV2JA"
_TEST_ISSUER = "https://superb-tick-45.clerk.accounts.dev"
_TEST_ORIGIN = "http://localhost:5173"


def _sign_jwt(payload: dict, kid: str = "test-kid") -> str:
    """Sign a JWT with the test RSA private key."""
    return pyjwt.encode(payload, _private_pem, algorithm="RS256", headers={"kid": kid})


def _claims(**overrides) -> dict:
    now = int(time.time())
    claims = {
        "sub": "user_xyz",
        "iat": now - 10,
        "exp": now + 300,
        "nbf": now - 10,
        "iss": _TEST_ISSUER,
        "azp": _TEST_ORIGIN,
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


@dataclass
class _FakeSigningKey:
    key: object


def _mock_jwks_client():
    client = MagicMock()
    client.get_signing_key_from_jwt.return_value = _FakeSigningKey(key=_public_key)
    return client


def _verifier(audiences: list[str] | None = None) -> ClerkVerifier:
    return ClerkVerifier(_TEST_CLERK_PK, [_TEST_ORIGIN], audiences, jwks_client=_mock_jwks_client())


async def _call_require_auth(token: str, verifier: ClerkVerifier | None = None) -> ClerkUser:
    creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)
    mock_request = MagicMock()
    mock_request.state = MagicMock()

    with (
        patch("saaskit.core.auth.get_clerk_verifier", return_value=verifier or _verifier()),
        patch("saaskit.core.provisioning.provision_user_on_first_login", new_callable=AsyncMock),
    ):
        return await require_auth(request=mock_request, credentials=creds)


class TestFrontendApiDomain:
    def test_parses_test_publishable_key(self):
        # Payload decodes to "superb-tick-45.clerk.accounts.dev$"
        assert frontend_api_domain(_TEST_CLERK_PK) == "superb-tick-45.clerk.accounts.dev"

    def test_parses_live_publishable_key(self):
        payload = base64.b64encode(b"example.clerk.accounts.dev$").decode()
        assert frontend_api_domain(f"pk_live_{payload}") == "example.clerk.accounts.dev"

    def test_invalid_key_raises(self):
        with pytest.raises(ValueError, match="Invalid Clerk publishable key"):
            frontend_api_domain("not-a-valid-key")


class TestClerkVerifier:
    def test_valid_token(self):
        user = _verifier().verify(_sign_jwt(_claims(sub="user_abc")))

        assert user.user_id == "user_abc"
        assert user.claims["azp"] == _TEST_ORIGIN

    def test_expired_token_raises(self):
        now = int(time.time())
        token = _sign_jwt(_claims(iat=now - 600, exp=now - 300, nbf=now - 600))

        with pytest.raises(HTTPException) as exc_info:
            _verifier().verify(token)
        assert exc_info.value.status_code == 401
        assert "expired" in exc_info.value.detail.lower()

    def test_immature_token_raises(self):
        now = int(time.time())
        token = _sign_jwt(_claims(iat=now + 600, exp=now + 900, nbf=now + 600))

        with pytest.raises(HTTPException) as exc_info:
            _verifier().verify(token)
        assert exc_info.value.status_code == 401

    def test_missing_sub_raises(self):
        token = _sign_jwt(_claims(sub=None))

        with pytest.raises(HTTPException) as exc_info:
            _verifier().verify(token)
        assert exc_info.value.status_code == 401
        assert "sub" in exc_info.value.detail.lower()


class TestRequireAuth:
    async def test_valid_bearer_token(self):
        user = await _call_require_auth(_sign_jwt(_claims()))
        assert user.user_id == "user_xyz"

    async def test_missing_credentials_raises_401(self):
        mock_request = MagicMock()
        with pytest.raises(HTTPException) as exc_info:
            await require_auth(request=mock_request, credentials=None)
        assert exc_info.value.status_code == 401

    async def test_invalid_token_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await _call_require_auth("garbage.token.here")
        assert exc_info.value.status_code == 401

    async def test_invalid_azp_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await _call_require_auth(_sign_jwt(_claims(azp="https://evil-site.com")))
        assert "origin" in exc_info.value.detail.lower()

    async def test_missing_azp_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await _call_require_auth(_sign_jwt(_claims(azp=None)))
        assert "azp" in exc_info.value.detail.lower()

    async def test_invalid_issuer_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await _call_require_auth(_sign_jwt(_claims(iss="https://evil-issuer.example")))
        assert "issuer" in exc_info.value.detail.lower()

    async def test_audience_enforced_when_configured(self):
        verifier = _verifier(audiences=["saaskit-api"])

        with pytest.raises(HTTPException) as exc_info:
            await _call_require_auth(_sign_jwt(_claims(aud="other-api")), verifier)
        assert "aud" in exc_info.value.detail.lower()

        user = await _call_require_auth(_sign_jwt(_claims(sub="user_aud", aud=["saaskit-api"])), verifier)
        assert user.user_id == "user_aud"

    async def test_audience_ignored_when_not_configured(self):
        user = await _call_require_auth(_sign_jwt(_claims(sub="user_any_aud", aud="whatever")))
        assert user.user_id == "user_any_aud"

    async def test_misconfigured_publishable_key_is_500(self):
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=_sign_jwt(_claims()))

        with patch("saaskit.core.auth.get_clerk_verifier", side_effect=ValueError("Invalid Clerk publishable key format")):
            with pytest.raises(HTTPException) as exc_info:
                await require_auth(request=MagicMock(), credentials=creds)
        assert exc_info.value.status_code == 500


class TestRequireAdmin:
    def test_admin_claim(self):
        assert ClerkUser(user_id="u", claims={"public_metadata": {"admin": True}}).is_admin
        assert not ClerkUser(user_id="u", claims={"public_metadata": {"admin": "yes"}}).is_admin
        assert not ClerkUser(user_id="u", claims={"public_metadata": None}).is_admin
        assert not ClerkUser(user_id="u", claims={}).is_admin

    async def test_non_admin_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_admin(ClerkUser(user_id="u", claims={}))
        assert exc_info.value.status_code == 403


@pytest.mark.integration
class TestProvisioning:
    async def test_first_login_creates_user(self, session_factory):
        claims = {"email": "new@example.com", "name": "New Person", "image_url": "https://img.test/new.png"}

        user = await provision_user_on_first_login("user_new", claims)

        assert user.email == "new@example.com"
        assert user.image == "https://img.test/new.png"
        assert user.customer_id is None

    async def test_repeat_login_is_noop(self, session_factory):
        first = await provision_user_on_first_login("user_repeat", {"email": "r@example.com"})
        second = await provision_user_on_first_login("user_repeat", {"email": "changed@example.com"})

        assert first.id == second.id
        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(User))
        assert count == 1

    async def test_get_current_user_via_api(self, client, session_factory):
        token = _sign_jwt(_claims(sub="user_api_first", email="api@example.com"))
        _provisioned_cache.discard("user_api_first")

        with patch("saaskit.core.auth.get_clerk_verifier", return_value=_verifier()):
            response = await client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["email"] == "api@example.com"
