"""Clerk session authentication.

The publishable key encodes the Clerk frontend API domain, which yields both
the expected token issuer and the JWKS endpoint. PyJWT verifies signature,
timing claims, issuer and (when audiences are configured) audience; the
authorized party (azp) must be one of the allowed browser origins.
"""

import base64
from dataclasses import dataclass
from functools import lru_cache

import jwt as pyjwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient
from sqlalchemy import select

from saaskit.core.config import get_settings
from saaskit.db.models.user import User

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

_REQUIRED_CLAIMS = ["sub", "exp", "nbf", "iat"]

# Clerk user ids already known to have a local row
_provisioned_cache: set[str] = set()


def frontend_api_domain(publishable_key: str) -> str:
    """Decode ``pk_(test|live)_<base64("<domain>$")>`` into the Clerk domain."""
    prefix, _, encoded = publishable_key.partition("_")
    _, _, encoded = encoded.partition("_")
    if prefix != "pk" or not encoded:
        raise ValueError("Invalid Clerk publishable key format")

    try:
        domain = base64.b64decode(encoded + "==").decode("utf-8").rstrip("$")
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("Invalid Clerk publishable key: cannot decode") from exc

    if not domain:
        raise ValueError("Invalid Clerk publishable key: empty domain")
    return domain


@dataclass(frozen=True)
class ClerkUser:
    """Authenticated caller: Clerk user id plus the verified session claims."""

    user_id: str
    claims: dict

    @property
    def is_admin(self) -> bool:
        return (self.claims.get("public_metadata") or {}).get("admin") is True


class ClerkVerifier:
    """Verifies Clerk session JWTs for one Clerk instance."""

    def __init__(
        self,
        publishable_key: str,
        allowed_origins: list[str],
        allowed_audiences: list[str] | None = None,
        jwks_client: PyJWKClient | None = None,
    ):
        self.issuer = f"https://{frontend_api_domain(publishable_key)}"
        self.allowed_origins = frozenset(allowed_origins)
        self.allowed_audiences = list(allowed_audiences or [])
        self.jwks_client = jwks_client or PyJWKClient(
            f"{self.issuer}/.well-known/jwks.json", cache_keys=True, lifespan=300
        )

    def _decode(self, token: str) -> dict:
        signing_key = self.jwks_client.get_signing_key_from_jwt(token)
        return pyjwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=self.issuer,
            audience=self.allowed_audiences or None,
            options={"verify_aud": bool(self.allowed_audiences), "require": _REQUIRED_CLAIMS},
        )

    def verify(self, token: str) -> ClerkUser:
        """Return the caller for a valid token. Raises ``HTTPException(401)`` otherwise."""
        try:
            claims = self._decode(token)
        except pyjwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except pyjwt.ImmatureSignatureError:
            raise HTTPException(status_code=401, detail="Token not yet valid")
        except pyjwt.InvalidIssuerError:
            raise HTTPException(status_code=401, detail="Invalid issuer (iss mismatch)")
        except pyjwt.InvalidAudienceError:
            raise HTTPException(status_code=401, detail="Unauthorized audience (aud mismatch)")
        except pyjwt.MissingRequiredClaimError as exc:
            raise HTTPException(status_code=401, detail=f"Missing required claim: {exc.claim}")
        except pyjwt.PyJWTError as exc:
            raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

        azp = claims.get("azp")
        if not azp:
            raise HTTPException(status_code=401, detail="Missing azp claim")
        if azp not in self.allowed_origins:
            raise HTTPException(status_code=401, detail="Unauthorized origin (azp mismatch)")

        return ClerkUser(user_id=claims["sub"], claims=claims)


@lru_cache
def get_clerk_verifier() -> ClerkVerifier:
    settings = get_settings()
    return ClerkVerifier(
        settings.clerk_publishable_key,
        settings.clerk_allowed_origins,
        settings.clerk_allowed_audiences,
    )


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> ClerkUser:
    """FastAPI dependency: verify the bearer token and provision the caller on first sight.

    Usage::

        @router.get("/protected")
        async def protected(user: ClerkUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    try:
        verifier = get_clerk_verifier()
    except ValueError as exc:
        logger.error("clerk_misconfigured", error=str(exc))
        raise HTTPException(status_code=500, detail="Authentication is misconfigured") from exc

    user = verifier.verify(credentials.credentials)

    if user.user_id not in _provisioned_cache:
        from saaskit.core.provisioning import provision_user_on_first_login

        await provision_user_on_first_login(user.user_id, user.claims)
        _provisioned_cache.add(user.user_id)

    request.state.user_id = user.user_id
    return user


async def get_current_user(user: ClerkUser = Depends(require_auth)) -> User:
    """FastAPI dependency that loads the local User row for the authenticated caller."""
    from saaskit.db.base import get_session_factory

    async with get_session_factory()() as session:
        db_user = (
            await session.execute(select(User).where(User.clerk_user_id == user.user_id))
        ).scalar_one_or_none()

    if db_user is None:
        # Deleted since it was provisioned; provision again on the next call
        _provisioned_cache.discard(user.user_id)
        raise HTTPException(status_code=401, detail="User not found")

    return db_user


async def require_admin(user: ClerkUser = Depends(require_auth)) -> ClerkUser:
    """FastAPI dependency that requires Clerk ``public_metadata.admin``."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
