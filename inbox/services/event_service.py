"""Realtime notifications for the inbox UI."""

import json
from abc import ABC, abstractmethod
from typing import Optional

import redis

from inbox.config import settings
from inbox.logging_config import get_logger
from inbox.models import Contact, Conversation, Message

logger = get_logger("event_service")

MESSAGE_RECEIVED = "message.received"
MESSAGE_STATUS_UPDATED = "message.status_updated"
INBOX_CHANNEL = "inbox"


def conversation_channel(conversation_id) -> str:
    return f"conversation.{conversation_id}"


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _num(value) -> Optional[float]:
    return float(value) if value is not None else None


def serialize_message(message: Message) -> dict:
    return {
        "id": str(message.id),
        "wam_id": message.wam_id,
        "conversation_id": str(message.conversation_id),
        "type": message.kind,
        "direction": message.direction,
        "body": message.body,
        "caption": message.caption,
        "media_url": message.media_url,
        "media_mime_type": message.media_mime_type,
        "latitude": _num(message.latitude),
        "longitude": _num(message.longitude),
        "status": message.status,
        "created_at": _iso(message.created_at),
    }


def build_message_received_payload(
    message: Message,
    conversation: Conversation,
    contact: Contact,
    is_new_session: bool = False,
) -> dict:
    return {
        "message": serialize_message(message),
        "conversation": {
            "id": str(conversation.id),
            "contact_id": str(conversation.contact_id),
            "status": conversation.status,
            "unread_count": conversation.unread_count,
            "last_interaction_at": _iso(conversation.last_interaction_at),
            "last_customer_message_at": _iso(conversation.last_customer_message_at),
        },
        "contact": {
            "id": str(contact.id),
            "name": contact.name,
            "wa_id": contact.wa_id,
        },
        "is_new_session": is_new_session,
    }


def build_status_updated_payload(message: Message) -> dict:
    return {
        "message_id": str(message.id),
        "wam_id": message.wam_id,
        "conversation_id": str(message.conversation_id),
        "status": message.status,
        "error": message.error,
    }


class EventPublisher(ABC):
    """Publishes named events to one or more channels."""

    @abstractmethod
    def publish(self, channels: list[str], event: str, payload: dict) -> None:
        pass


class RedisEventPublisher(EventPublisher):
    def __init__(self, redis_url: str):
        self.client = redis.Redis.from_url(redis_url, socket_timeout=5)

    def publish(self, channels: list[str], event: str, payload: dict) -> None:
        data = json.dumps({"event": event, "data": payload}, ensure_ascii=False, default=str)
        for channel in channels:
            self.client.publish(channel, data)


class LoggingEventPublisher(EventPublisher):
    def publish(self, channels: list[str], event: str, payload: dict) -> None:
        logger.info(f"Event {event}", extra={"context": {"channels": channels}})


def publish_safely(publisher: EventPublisher, event: str, payload: dict, conversation_id=None) -> bool:
    """Publish without ever raising; notifications are best-effort."""
    channels = [INBOX_CHANNEL]
    if conversation_id is not None:
        channels.append(conversation_channel(conversation_id))
    try:
        publisher.publish(channels, event, payload)
        return True
    except Exception as e:
        logger.error(
            f"Event publish failed: {e}",
            extra={"context": {"event": event, "conversation_id": str(conversation_id)}},
        )
        return False


_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    global _publisher
    if _publisher is None:
        if settings.redis_url:
            _publisher = RedisEventPublisher(settings.redis_url)
        else:
            _publisher = LoggingEventPublisher()
    return _publisher
