from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ContactSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    wa_id: str
    name: str
    profile_name: Optional[str] = None
    phone_number: Optional[str] = None
    status: str


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    wam_id: Optional[str] = None
    direction: str
    kind: str
    body: Optional[str] = None
    caption: Optional[str] = None
    media_url: Optional[str] = None
    media_mime_type: Optional[str] = None
    media_filename: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_name: Optional[str] = None
    location_address: Optional[str] = None
    status: str
    error: Optional[str] = None
    created_at: datetime


class ConversationOut(BaseModel):
    id: UUID
    status: str
    assigned_to: Optional[str] = None
    automation_enabled: bool
    unread_count: int
    last_customer_message_at: Optional[datetime] = None
    last_interaction_at: Optional[datetime] = None
    inside_window: bool
    contact: ContactSummary
    last_message: Optional[MessageOut] = None


class SendTextRequest(BaseModel):
    body: str = Field(min_length=1, max_length=4096)


class SendTemplateRequest(BaseModel):
    template_name: str = Field(min_length=1)
    language_code: str = "en_US"
    components: list[dict] = Field(default_factory=list)


class AssignRequest(BaseModel):
    staff_id: Optional[str] = None


class AutomationRequest(BaseModel):
    enabled: Optional[bool] = None


class SendResponse(BaseModel):
    success: bool
    message: MessageOut
    error: Optional[str] = None
    error_code: Optional[str] = None


class ActionError(BaseModel):
    success: bool = False
    error: str
    error_code: str
