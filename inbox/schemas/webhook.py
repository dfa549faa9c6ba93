from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookProfile(BaseModel):
    name: Optional[str] = None


class WebhookContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[WebhookProfile] = None


class WebhookValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    messaging_product: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    contacts: list[WebhookContact] = Field(default_factory=list)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    statuses: list[dict[str, Any]] = Field(default_factory=list)

    def profile_name_for(self, wa_id: Optional[str]) -> Optional[str]:
        """Profile name of the matching contact, else of the first contact."""
        for contact in self.contacts:
            if contact.wa_id == wa_id and contact.profile and contact.profile.name:
                return contact.profile.name
        if self.contacts and self.contacts[0].profile:
            return self.contacts[0].profile.name
        return None


class WebhookChange(BaseModel):
    field: Optional[str] = None
    value: WebhookValue = Field(default_factory=WebhookValue)


class WebhookEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WebhookChange] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    """Top-level batch. Entries stay raw so one malformed entry cannot reject the batch."""

    object: Optional[str] = None
    entry: list[Any] = Field(default_factory=list)


class WebhookAck(BaseModel):
    status: str = "received"
