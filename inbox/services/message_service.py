from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inbox.logging_config import get_logger
from inbox.models import Message
from inbox.services.message_content import MessageContent

logger = get_logger("message_service")

HISTORY_LIMIT = 10


class DuplicateMessageError(Exception):
    """A message with this provider id is already stored."""

    def __init__(self, wam_id: str):
        self.wam_id = wam_id
        super().__init__(f"Duplicate message: {wam_id}")


def wam_id_exists(db: Session, wam_id: str) -> bool:
    return db.query(Message.id).filter(Message.wam_id == wam_id).first() is not None


def get_message_by_wam_id(db: Session, wam_id: str) -> Optional[Message]:
    return db.query(Message).filter(Message.wam_id == wam_id).first()


def save_message(
    db: Session,
    conversation_id: UUID,
    direction: str,
    content: Optional[MessageContent] = None,
    *,
    status: str = "pending",
    wam_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    **fields,
) -> Message:
    """Append a message to the conversation ledger.

    Insert runs inside a savepoint so a concurrent duplicate `wam_id`
    surfaces as DuplicateMessageError without poisoning the outer transaction.
    """
    values = content.to_fields() if content is not None else {}
    values.update(fields)
    message = Message(
        conversation_id=conversation_id,
        direction=direction,
        wam_id=wam_id,
        status=status,
        created_at=created_at or datetime.now(timezone.utc),
        **values,
    )
    try:
        with db.begin_nested():
            db.add(message)
            db.flush()
    except IntegrityError as e:
        if wam_id:
            raise DuplicateMessageError(wam_id) from e
        raise
    return message


def list_messages(db: Session, conversation_id: UUID, limit: Optional[int] = None) -> list[Message]:
    query = db.query(Message).filter(Message.conversation_id == conversation_id).order_by(Message.created_at.asc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_last_message(db: Session, conversation_id: UUID) -> Optional[Message]:
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .first()
    )


def get_history(db: Session, conversation_id: UUID, limit: int = HISTORY_LIMIT) -> list[dict]:
    """Last `limit` messages, oldest first, as chat-completion turns."""
    recent = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )
    history = []
    for msg in reversed(recent):
        text = msg.body or msg.caption
        if not text:
            continue
        role = "user" if msg.direction == "inbound" else "assistant"
        history.append({"role": role, "content": text})
    return history
