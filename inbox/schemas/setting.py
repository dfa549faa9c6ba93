from typing import Any, Literal, Optional

from pydantic import BaseModel


class SettingUpdateRequest(BaseModel):
    value: Any = None
    type: Optional[Literal["string", "boolean", "integer", "json"]] = None
    group: Optional[str] = None
    description: Optional[str] = None


class SettingOut(BaseModel):
    key: str
    value: Any = None
    type: str
    group: str
