"""Automated replies composed by the generation provider."""

from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from inbox.config import settings
from inbox.logging_config import get_logger
from inbox.models import Contact, Conversation, Message
from inbox.services.dispatch_service import OutboundText, send_outbound
from inbox.services.event_service import (
    MESSAGE_RECEIVED,
    EventPublisher,
    build_message_received_payload,
    publish_safely,
)
from inbox.services.llm import LLMProvider, OpenAIProvider
from inbox.services.message_service import HISTORY_LIMIT, get_history
from inbox.services.settings_service import SettingsStore
from inbox.services.state_machine import is_inside_window
from inbox.services.whatsapp_service import WhatsAppClient

logger = get_logger("auto_reply_service")

REPLY_MAX_TOKENS = 500
REPLY_TEMPERATURE = 0.7
REPLY_TIMEOUT_SECONDS = 30.0

DEFAULT_INSTRUCTIONS = """You are a helpful assistant for a cosmetic shop. Do not make medical claims.

Additional Guidelines:
- Be friendly, professional, and knowledgeable about beauty and skincare products
- Help customers find the right products for their skin type and concerns
- Provide ingredient information when asked
- Never claim that products can cure, treat, or diagnose any medical condition
- Recommend consulting a dermatologist for serious skin concerns
- Keep responses concise and WhatsApp-friendly (under 200 words)
- Use emojis sparingly to maintain a friendly tone ✨"""


def build_system_prompt(contact: Contact, instructions: Optional[str] = None) -> str:
    return (
        f"{(instructions or DEFAULT_INSTRUCTIONS).strip()}\n\n"
        "Customer Information:\n"
        f"- Name: {contact.name}\n"
        f"- WhatsApp: {contact.wa_id}\n"
        f"- Status: {contact.status}"
    )


def build_llm_provider(store: SettingsStore) -> LLMProvider:
    return OpenAIProvider(
        api_key=store.get("openai_api_key", ""),
        default_model=store.get("openai_model", settings.openai_model),
        base_url=settings.openai_base_url,
    )


def generate_reply(
    db: Session,
    *,
    conversation_id: UUID,
    llm: LLMProvider,
    client: WhatsAppClient,
    publisher: EventPublisher,
    store: SettingsStore,
    message_id: Optional[UUID] = None,
) -> Optional[Message]:
    """Compose and send one automated reply.

    Returns the outbound message, or None when the reply was skipped.
    LLMError propagates so the task queue can retry.
    """
    context = {"conversation_id": str(conversation_id), "message_id": str(message_id) if message_id else None}
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation is None:
        logger.warning("Auto reply for unknown conversation", extra={"context": context})
        return None
    if not conversation.automation_enabled:
        logger.info("Auto reply skipped: automation disabled", extra={"context": context})
        return None
    if not is_inside_window(conversation.last_customer_message_at):
        logger.info("Auto reply skipped: outside messaging window", extra={"context": context})
        return None

    contact = conversation.contact
    history = get_history(db, conversation.id, limit=HISTORY_LIMIT)
    messages = [{"role": "system", "content": build_system_prompt(contact, store.get("ai_system_prompt"))}]
    messages.extend(history)

    response = llm.generate(
        messages,
        temperature=REPLY_TEMPERATURE,
        max_tokens=REPLY_MAX_TOKENS,
        timeout_seconds=REPLY_TIMEOUT_SECONDS,
    )
    if not response.content:
        logger.warning("Auto reply empty, nothing sent", extra={"context": context})
        return None

    message, result = send_outbound(db, client, conversation, contact, OutboundText(response.content))
    db.commit()

    if result.ok:
        logger.info("Auto reply sent", extra={"context": {**context, "wam_id": result.value}})
    else:
        logger.error(
            f"Auto reply send failed: {result.error}",
            extra={"context": {**context, "error_code": result.error_code}},
        )

    publish_safely(
        publisher,
        MESSAGE_RECEIVED,
        build_message_received_payload(message, conversation, contact),
        conversation_id=conversation.id,
    )
    return message
