from fastapi import APIRouter

from saaskit.api.routes import apps, billing, health, users

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(apps.router, prefix="/apps", tags=["apps"])
api_router.include_router(billing.router, tags=["billing"])
