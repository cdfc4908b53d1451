"""Apps routes: per-tenant CRUD and API key regeneration."""

from uuid import UUID

from fastapi import APIRouter, Depends

from saaskit.api.deps import get_app_service
from saaskit.core.auth import get_current_user
from saaskit.db.models.app import App
from saaskit.db.models.user import User
from saaskit.schemas.apps import ApiKeyResponse, AppCreate, AppResponse, AppUpdate
from saaskit.services.app_service import AppService

router = APIRouter()


def _to_response(app: App) -> AppResponse:
    return AppResponse(
        id=str(app.id),
        name=app.name,
        description=app.description,
        api_key=app.api_key,
        status=app.status,
        created_at=app.created_at.isoformat(),
        updated_at=app.updated_at.isoformat(),
    )


@router.get("/", response_model=list[AppResponse])
async def list_apps(
    user: User = Depends(get_current_user),
    apps: AppService = Depends(get_app_service),
):
    return [_to_response(app) for app in await apps.list_apps(user.id)]


@router.post("/", response_model=AppResponse, status_code=201)
async def create_app(
    body: AppCreate,
    user: User = Depends(get_current_user),
    apps: AppService = Depends(get_app_service),
):
    return _to_response(await apps.create_app(user.id, body.name, body.description))


@router.patch("/{app_id}", response_model=AppResponse)
async def update_app(
    app_id: UUID,
    body: AppUpdate,
    user: User = Depends(get_current_user),
    apps: AppService = Depends(get_app_service),
):
    app = await apps.update_app(
        user.id,
        app_id,
        name=body.name,
        description=body.description,
        status=body.status,
    )
    return _to_response(app)


@router.delete("/{app_id}", status_code=204)
async def delete_app(
    app_id: UUID,
    user: User = Depends(get_current_user),
    apps: AppService = Depends(get_app_service),
):
    await apps.delete_app(user.id, app_id)


@router.post("/{app_id}/api-key", response_model=ApiKeyResponse)
async def regenerate_api_key(
    app_id: UUID,
    user: User = Depends(get_current_user),
    apps: AppService = Depends(get_app_service),
):
    return ApiKeyResponse(api_key=await apps.regenerate_api_key(user.id, app_id))
