from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from inbox.schemas.conversation import ContactSummary


class ContactCreateRequest(BaseModel):
    wa_id: str = Field(min_length=5, max_length=32, pattern=r"^\d+$")
    name: Optional[str] = None
    phone_number: Optional[str] = None
    status: str = Field(default="new", pattern=r"^(new|lead|customer)$")


class ContactCreateResponse(BaseModel):
    contact: ContactSummary
    conversation_id: UUID
    created: bool
