"""TextBuilder Settings Routes

Endpoints:
- GET/PUT /api/settings/preferences
- GET/POST /api/settings/api-keys
- DELETE /api/settings/api-keys/{key}
- GET/PUT /api/settings/notifications
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
import logging

from middleware import require_auth
from textbuilder.services.settings_service import settings_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["Settings"])


class PreferencesRequest(BaseModel):
    preferences: Optional[Dict[str, Any]] = None


class ApiKeyRequest(BaseModel):
    name: Optional[str] = None


class NotificationSettingsRequest(BaseModel):
    notification_settings: Optional[Dict[str, Any]] = Field(None, alias="notificationSettings")

    model_config = {"populate_by_name": True}


@router.get("/preferences")
async def get_preferences(user: dict = Depends(require_auth)):
    preferences = await settings_service.get_preferences(user["account_id"])
    return {"success": True, "data": {"preferences": preferences}}


@router.put("/preferences")
async def update_preferences(request: PreferencesRequest, user: dict = Depends(require_auth)):
    if request.preferences is None:
        raise HTTPException(status_code=400, detail="Preferences are required")
    preferences = await settings_service.update_preferences(user["account_id"], request.preferences)
    return {"success": True, "data": {"preferences": preferences}}


@router.get("/api-keys")
async def list_api_keys(user: dict = Depends(require_auth)):
    return {"success": True, "data": await settings_service.list_api_keys(user["account_id"])}


@router.post("/api-keys", status_code=201)
async def create_api_key(request: ApiKeyRequest, user: dict = Depends(require_auth)):
    name = (request.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="API key name is required")
    api_key = await settings_service.create_api_key(user["account_id"], name)
    return {"success": True, "data": api_key}


@router.delete("/api-keys/{key}")
async def delete_api_key(key: str, user: dict = Depends(require_auth)):
    if not await settings_service.delete_api_key(user["account_id"], key):
        raise HTTPException(status_code=404, detail="API key not found")
    return {"success": True, "data": {"key": key}}


@router.get("/notifications")
async def get_notification_settings(user: dict = Depends(require_auth)):
    settings = await settings_service.get_notification_settings(user["account_id"])
    return {"success": True, "data": {"notificationSettings": settings}}


@router.put("/notifications")
async def update_notification_settings(
    request: NotificationSettingsRequest,
    user: dict = Depends(require_auth),
):
    if request.notification_settings is None:
        raise HTTPException(status_code=400, detail="Notification settings are required")
    settings = await settings_service.update_notification_settings(
        user["account_id"], request.notification_settings
    )
    return {"success": True, "data": {"notificationSettings": settings}}
