"""Outbound dispatch: send through the provider and record the result on the Message."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy.orm import Session

from inbox.logging_config import get_logger, mask_identifier
from inbox.models import Contact, Conversation, Message
from inbox.services.conversation_service import touch_interaction
from inbox.services.errors import ProviderUnavailableError
from inbox.services.message_content import MessageKind
from inbox.services.message_service import save_message
from inbox.services.result import Result
from inbox.services.whatsapp_service import WhatsAppClient

logger = get_logger("dispatch_service")


@dataclass
class OutboundText:
    body: str

    def send(self, client: WhatsAppClient, recipient: str) -> Result[str]:
        return client.send_text(recipient, self.body)

    def message_fields(self) -> dict:
        return {"kind": MessageKind.TEXT.value, "body": self.body}


@dataclass
class OutboundImage:
    link: str
    caption: Optional[str] = None

    def send(self, client: WhatsAppClient, recipient: str) -> Result[str]:
        return client.send_image(recipient, self.link, self.caption)

    def message_fields(self) -> dict:
        return {"kind": MessageKind.IMAGE.value, "media_url": self.link, "caption": self.caption}


@dataclass
class OutboundTemplate:
    name: str
    language_code: str = "en_US"
    components: list = field(default_factory=list)

    def send(self, client: WhatsAppClient, recipient: str) -> Result[str]:
        return client.send_template(recipient, self.name, self.language_code, self.components)

    def message_fields(self) -> dict:
        return {"kind": MessageKind.TEMPLATE.value, "body": f"[Template: {self.name}]"}


OutboundContent = Union[OutboundText, OutboundImage, OutboundTemplate]


def dispatch(client: WhatsAppClient, recipient: str, content: OutboundContent) -> Result[str]:
    """Send content; transport failures become a `provider_unreachable` result."""
    try:
        return content.send(client, recipient)
    except ProviderUnavailableError as e:
        logger.error(
            f"Provider unreachable on send: {e.message}",
            extra={"context": {"recipient": mask_identifier(recipient)}},
        )
        return Result.failure(e.message, "provider_unreachable")


def record_send_result(db: Session, message: Message, result: Result[str]) -> Message:
    if result.ok:
        message.status = "sent"
        message.wam_id = result.value
        message.error = None
    else:
        message.status = "failed"
        message.error = result.error
    message.updated_at = datetime.now(timezone.utc)
    db.flush()
    return message


def send_outbound(
    db: Session,
    client: WhatsAppClient,
    conversation: Conversation,
    contact: Contact,
    content: OutboundContent,
) -> tuple[Message, Result[str]]:
    """Persist a pending outbound Message, send it, and record the outcome."""
    message = save_message(db, conversation.id, "outbound", status="pending", **content.message_fields())

    result = dispatch(client, contact.wa_id, content)
    record_send_result(db, message, result)

    if result.ok:
        touch_interaction(db, conversation)
    else:
        logger.warning(
            f"Outbound send failed: {result.error}",
            extra={
                "context": {
                    "conversation_id": str(conversation.id),
                    "message_id": str(message.id),
                    "error_code": result.error_code,
                }
            },
        )
    return message, result
