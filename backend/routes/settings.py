"""Health check and API key endpoints."""

from fastapi import APIRouter, Depends, Request

from backend.deps import get_principal, get_storage
from chorus.security import Principal
from chorus.storage import Storage

from .models import ApiKeyStatus, SetApiKey

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Health check."""
    return {"status": "ok", "active_streams": request.app.state.service.active_streams}


@router.get("/api-key")
async def get_api_key_status(
    request: Request,
    principal: Principal = Depends(get_principal),
    storage: Storage = Depends(get_storage),
) -> ApiKeyStatus:
    """Whether a provider key is available for the caller. The key itself is never returned."""
    if storage.get_api_key(principal.user_id):
        return ApiKeyStatus(has_api_key=True, source="user")
    if request.app.state.settings.openrouter_api_key:
        return ApiKeyStatus(has_api_key=True, source="server")
    return ApiKeyStatus(has_api_key=False)


@router.put("/api-key")
async def set_api_key(
    body: SetApiKey,
    request: Request,
    principal: Principal = Depends(get_principal),
    storage: Storage = Depends(get_storage),
) -> ApiKeyStatus:
    """Store (or, with an empty key, clear) the caller's provider key."""
    storage.set_api_key(principal.user_id, body.api_key.strip() or None)
    return await get_api_key_status(request, principal, storage)
