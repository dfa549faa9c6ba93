"""Webhook ingestion pipeline.

Each inbound message is committed in its own transaction (contact,
conversation, message). Follow-up work (media, read receipt, notification,
automated reply) runs after the commit and never undoes it.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from inbox.logging_config import get_logger, mask_identifier
from inbox.models import Contact, Conversation, Message
from inbox.schemas.webhook import WebhookEntry, WebhookValue
from inbox.services.conversation_service import register_inbound, resolve_contact, resolve_conversation
from inbox.services.event_service import (
    MESSAGE_RECEIVED,
    EventPublisher,
    build_message_received_payload,
    publish_safely,
)
from inbox.services.message_content import MediaContent, parse_message_content
from inbox.services.message_service import DuplicateMessageError, save_message, wam_id_exists
from inbox.services.state_machine import starts_new_session
from inbox.services.status_service import reconcile_statuses
from inbox.services.task_queue import FETCH_MEDIA, GENERATE_REPLY, MARK_READ, TaskQueue

logger = get_logger("ingestion_service")


@dataclass
class IngestedMessage:
    message_id: UUID
    conversation_id: UUID
    contact_id: UUID
    wam_id: str
    is_new_session: bool
    automation_enabled: bool
    has_media: bool


@dataclass
class IngestionReport:
    received: int = 0
    stored: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
    statuses: int = 0

    def as_dict(self) -> dict:
        return dict(self.__dict__)


def ingest_message(
    db: Session,
    raw_message: dict[str, Any],
    value: WebhookValue,
    now: Optional[datetime] = None,
) -> Optional[IngestedMessage]:
    """Persist one inbound message. Caller commits.

    Returns None when the message is malformed and skipped. Raises
    DuplicateMessageError when the provider id is already stored.
    """
    wam_id = raw_message.get("id")
    if not wam_id:
        logger.warning("Webhook message without id skipped", extra={"context": {"type": raw_message.get("type")}})
        return None

    if wam_id_exists(db, wam_id):
        raise DuplicateMessageError(wam_id)

    sender = raw_message.get("from")
    if not sender:
        logger.warning("Webhook message without sender skipped", extra={"context": {"wam_id": wam_id}})
        return None

    now = now or datetime.now(timezone.utc)
    contact, _ = resolve_contact(db, sender, value.profile_name_for(sender), now=now)
    conversation, _ = resolve_conversation(db, contact, now=now)
    is_new_session = starts_new_session(conversation.last_customer_message_at, now)

    conversation = register_inbound(db, conversation.id, now=now)

    content = parse_message_content(raw_message)
    message = save_message(
        db,
        conversation.id,
        "inbound",
        content,
        status="delivered",
        wam_id=wam_id,
        created_at=now,
    )

    logger.info(
        "Inbound message stored",
        extra={
            "context": {
                "wam_id": wam_id,
                "conversation_id": str(conversation.id),
                "from": mask_identifier(sender),
                "kind": message.kind,
                "is_new_session": is_new_session,
            }
        },
    )
    return IngestedMessage(
        message_id=message.id,
        conversation_id=conversation.id,
        contact_id=contact.id,
        wam_id=wam_id,
        is_new_session=is_new_session,
        automation_enabled=bool(conversation.automation_enabled),
        has_media=isinstance(content, MediaContent) and bool(content.media_id),
    )


def run_follow_ups(
    db: Session,
    ingested: IngestedMessage,
    queue: TaskQueue,
    publisher: EventPublisher,
) -> None:
    """Post-commit side effects; each one is isolated and best-effort."""
    context = {"wam_id": ingested.wam_id, "conversation_id": str(ingested.conversation_id)}
    ids = {
        "message_id": str(ingested.message_id),
        "conversation_id": str(ingested.conversation_id),
        "contact_id": str(ingested.contact_id),
    }

    if ingested.has_media:
        try:
            queue.enqueue(FETCH_MEDIA, {"message_id": ids["message_id"]})
        except Exception as e:
            logger.error(f"Failed to schedule media fetch: {e}", extra={"context": context})

    try:
        queue.enqueue(MARK_READ, {"wam_id": ingested.wam_id, "message_id": ids["message_id"]})
    except Exception as e:
        logger.error(f"Failed to schedule read receipt: {e}", extra={"context": context})

    try:
        message = db.query(Message).filter(Message.id == ingested.message_id).one()
        conversation = db.query(Conversation).filter(Conversation.id == ingested.conversation_id).one()
        contact = db.query(Contact).filter(Contact.id == ingested.contact_id).one()
        publish_safely(
            publisher,
            MESSAGE_RECEIVED,
            build_message_received_payload(message, conversation, contact, ingested.is_new_session),
            conversation_id=conversation.id,
        )
    except Exception as e:
        logger.error(f"Failed to build notification: {e}", extra={"context": context})

    if ingested.automation_enabled:
        try:
            queue.enqueue(GENERATE_REPLY, ids)
        except Exception as e:
            logger.error(f"Failed to schedule auto reply: {e}", extra={"context": context})


def _process_messages(
    db: Session,
    value: WebhookValue,
    report: IngestionReport,
    queue: TaskQueue,
    publisher: EventPublisher,
    now: Optional[datetime],
) -> None:
    for raw_message in value.messages:
        report.received += 1
        if not isinstance(raw_message, dict):
            logger.warning("Webhook message is not an object, skipped")
            report.skipped += 1
            continue

        try:
            ingested = ingest_message(db, raw_message, value, now=now)
            if ingested is None:
                db.rollback()
                report.skipped += 1
                continue
            db.commit()
        except DuplicateMessageError as e:
            db.rollback()
            logger.debug("Duplicate webhook message skipped", extra={"context": {"wam_id": e.wam_id}})
            report.duplicates += 1
            continue
        except Exception as e:
            db.rollback()
            logger.error(
                f"Failed to ingest message: {e}",
                extra={"context": {"wam_id": raw_message.get("id")}},
                exc_info=True,
            )
            report.failed += 1
            continue

        report.stored += 1
        run_follow_ups(db, ingested, queue, publisher)


def process_batch(
    db: Session,
    payload: dict[str, Any],
    *,
    queue: TaskQueue,
    publisher: EventPublisher,
    now: Optional[datetime] = None,
) -> IngestionReport:
    """Process a provider webhook batch. Entries and messages are isolated from each other."""
    report = IngestionReport()
    entries = payload.get("entry") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        logger.warning("Webhook payload without entry list")
        return report

    for raw_entry in entries:
        try:
            entry = WebhookEntry.model_validate(raw_entry)
        except ValidationError as e:
            logger.warning(f"Malformed webhook entry skipped: {e.error_count()} errors")
            report.skipped += 1
            continue

        for change in entry.changes:
            if change.field != "messages":
                continue
            _process_messages(db, change.value, report, queue, publisher, now)
            if change.value.statuses:
                report.statuses += reconcile_statuses(db, change.value.statuses, publisher)

    logger.info("Webhook batch processed", extra={"context": report.as_dict()})
    return report
