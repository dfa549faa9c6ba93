"""Parsing of provider message payloads into typed content.

Each inbound message is parsed exactly once into one of the content
dataclasses below; `to_fields()` yields the columns stored on `Message`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    LOCATION = "location"
    STICKER = "sticker"
    CONTACTS = "contacts"
    INTERACTIVE = "interactive"
    REACTION = "reaction"
    TEMPLATE = "template"


MEDIA_KINDS = {
    MessageKind.IMAGE,
    MessageKind.DOCUMENT,
    MessageKind.AUDIO,
    MessageKind.VIDEO,
    MessageKind.STICKER,
}

DEFAULT_MIME_TYPES = {
    MessageKind.IMAGE: "image/jpeg",
    MessageKind.AUDIO: "audio/ogg",
    MessageKind.VIDEO: "video/mp4",
    MessageKind.STICKER: "image/webp",
}

LOCATION_PLACEHOLDER = "📍 Location shared"
CONTACTS_PLACEHOLDER = "📇 Contact shared"
INTERACTIVE_PLACEHOLDER = "Interactive response"
REACTION_PLACEHOLDER = "👍"


@dataclass
class TextContent:
    body: str
    kind: MessageKind = MessageKind.TEXT

    def to_fields(self) -> dict:
        return {"kind": self.kind.value, "body": self.body}


@dataclass
class MediaContent:
    kind: MessageKind
    media_id: Optional[str]
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None

    def to_fields(self) -> dict:
        return {
            "kind": self.kind.value,
            "body": None,
            "caption": self.caption,
            "media_id": self.media_id,
            "media_mime_type": self.mime_type,
            "media_filename": self.filename,
        }


@dataclass
class LocationContent:
    latitude: Optional[float]
    longitude: Optional[float]
    name: Optional[str] = None
    address: Optional[str] = None
    kind: MessageKind = MessageKind.LOCATION

    def to_fields(self) -> dict:
        return {
            "kind": self.kind.value,
            "body": LOCATION_PLACEHOLDER,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "location_name": self.name,
            "location_address": self.address,
        }


@dataclass
class PlaceholderContent:
    """Kinds stored with a display body only (contacts, interactive, reaction, unknown)."""

    kind: MessageKind
    body: str

    def to_fields(self) -> dict:
        return {"kind": self.kind.value, "body": self.body}


MessageContent = Union[TextContent, MediaContent, LocationContent, PlaceholderContent]


def _interactive_title(interactive: dict) -> Optional[str]:
    for key in ("button_reply", "list_reply"):
        reply = interactive.get(key)
        if isinstance(reply, dict) and reply.get("title"):
            return reply["title"]
    return None


def parse_message_content(message: dict) -> MessageContent:
    """Parse a provider message object into its content variant."""
    message_type = message.get("type") or "unknown"

    if message_type == "text":
        return TextContent(body=(message.get("text") or {}).get("body") or "")

    try:
        kind = MessageKind(message_type)
    except ValueError:
        return PlaceholderContent(
            kind=MessageKind.TEXT,
            body=f"[Unsupported message type: {message_type}]",
        )

    if kind in MEDIA_KINDS:
        media = message.get(message_type) or {}
        return MediaContent(
            kind=kind,
            media_id=media.get("id"),
            mime_type=media.get("mime_type") or DEFAULT_MIME_TYPES.get(kind),
            caption=media.get("caption") if kind in (MessageKind.IMAGE, MessageKind.VIDEO, MessageKind.DOCUMENT) else None,
            filename=media.get("filename") if kind == MessageKind.DOCUMENT else None,
        )

    if kind == MessageKind.LOCATION:
        location = message.get("location") or {}
        return LocationContent(
            latitude=location.get("latitude"),
            longitude=location.get("longitude"),
            name=location.get("name"),
            address=location.get("address"),
        )

    if kind == MessageKind.CONTACTS:
        return PlaceholderContent(kind=kind, body=CONTACTS_PLACEHOLDER)

    if kind == MessageKind.INTERACTIVE:
        title = _interactive_title(message.get("interactive") or {})
        return PlaceholderContent(kind=kind, body=title or INTERACTIVE_PLACEHOLDER)

    if kind == MessageKind.REACTION:
        emoji = (message.get("reaction") or {}).get("emoji")
        return PlaceholderContent(kind=kind, body=emoji or REACTION_PLACEHOLDER)

    # Inbound template echoes carry no renderable body.
    return PlaceholderContent(kind=MessageKind.TEXT, body=f"[Unsupported message type: {message_type}]")
