from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from inbox.config import settings
from inbox.schemas.setting import SettingOut, SettingUpdateRequest
from inbox.services.settings_service import SettingsStore, cast_value, get_settings_store

router = APIRouter(prefix="/api/settings")

SECRET_MARKERS = ("token", "secret", "api_key")


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _mask(key: str, value):
    if value and any(marker in key for marker in SECRET_MARKERS):
        return "********"
    return value


@router.get("/{group}")
def get_group(
    group: str,
    x_admin_token: Optional[str] = Header(default=None),
    store: SettingsStore = Depends(get_settings_store),
):
    _require_admin_token(x_admin_token)
    return {key: _mask(key, value) for key, value in store.get_group(group).items()}


@router.put("/{key}", response_model=SettingOut)
def update_setting(
    key: str,
    request: SettingUpdateRequest,
    x_admin_token: Optional[str] = Header(default=None),
    store: SettingsStore = Depends(get_settings_store),
):
    _require_admin_token(x_admin_token)
    try:
        row = store.set(key, request.value, request.type, request.group, request.description)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return SettingOut(key=row.key, value=_mask(key, cast_value(row.value, row.type)), type=row.type, group=row.group)
