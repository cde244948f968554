"""Transfer settings API routes."""

from fastapi import APIRouter, Depends

from stash.auth import get_current_owner
from stash.schemas.settings import SettingsResponse, UpdateSettingsRequest
from stash.service_locator import get_settings_service
from stash.services.settings_service import SettingsService

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("", response_model=SettingsResponse)
async def get_settings(
    current_owner: str = Depends(get_current_owner),
    settings_service: SettingsService = Depends(get_settings_service)
):
    return SettingsResponse(**settings_service.get_settings(current_owner).to_dict())


@router.put("", response_model=SettingsResponse)
async def update_settings(
    request: UpdateSettingsRequest,
    current_owner: str = Depends(get_current_owner),
    settings_service: SettingsService = Depends(get_settings_service)
):
    """
    Update transfer settings. Takes effect for transfers started afterwards.
    """
    settings = settings_service.update_settings(current_owner, request.model_dump(exclude_none=True))
    return SettingsResponse(**settings.to_dict())
