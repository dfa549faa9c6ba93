from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inbox.logging_config import get_logger, mask_identifier
from inbox.models import Contact, Conversation
from inbox.services.errors import ConversationActionError
from inbox.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    close,
    reopen,
)

logger = get_logger("conversation_service")


def get_contact_by_wa_id(db: Session, wa_id: str) -> Optional[Contact]:
    return db.query(Contact).filter(Contact.wa_id == wa_id).first()


def _insert_contact(db: Session, contact: Contact) -> tuple[Contact, bool]:
    """Insert under a savepoint. A concurrent insert of the same wa_id wins and is returned instead."""
    try:
        with db.begin_nested():
            db.add(contact)
            db.flush()
    except IntegrityError:
        existing = db.query(Contact).filter(Contact.wa_id == contact.wa_id).one()
        logger.info(
            "Contact created concurrently, reusing",
            extra={"context": {"contact_id": str(existing.id), "wa_id": mask_identifier(contact.wa_id)}},
        )
        return existing, False
    return contact, True


def resolve_contact(
    db: Session,
    wa_id: str,
    profile_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Contact, bool]:
    """Find contact by provider id or create a new one. Returns (contact, created)."""
    now = now or datetime.now(timezone.utc)
    contact = get_contact_by_wa_id(db, wa_id)

    if contact is None:
        contact, created = _insert_contact(
            db,
            Contact(
                wa_id=wa_id,
                phone_number=wa_id,
                name=profile_name or wa_id,
                profile_name=profile_name,
                status="new",
                last_active_at=now,
                created_at=now,
                updated_at=now,
            ),
        )
        if created:
            logger.info(
                "Contact created",
                extra={"context": {"contact_id": str(contact.id), "wa_id": mask_identifier(wa_id)}},
            )
            return contact, True

    contact.last_active_at = now
    if profile_name:
        contact.profile_name = profile_name
    contact.updated_at = now
    db.flush()
    return contact, False


def get_open_conversation(db: Session, contact_id: UUID, for_update: bool = False) -> Optional[Conversation]:
    query = db.query(Conversation).filter(
        Conversation.contact_id == contact_id,
        Conversation.status == ConversationStatus.OPEN.value,
    )
    if for_update:
        query = query.with_for_update()
    return query.order_by(Conversation.created_at.desc()).first()


def resolve_conversation(db: Session, contact: Contact, now: Optional[datetime] = None) -> tuple[Conversation, bool]:
    """Contact's open conversation, or a new one with automation enabled.

    The open-conversation unique index decides concurrent creates; the loser
    re-reads and gets the winner's conversation.
    """
    conversation = get_open_conversation(db, contact.id)
    if conversation is not None:
        return conversation, False

    now = now or datetime.now(timezone.utc)
    conversation = Conversation(
        contact_id=contact.id,
        status=ConversationStatus.OPEN.value,
        automation_enabled=True,
        unread_count=0,
        last_interaction_at=now,
        created_at=now,
        updated_at=now,
    )
    try:
        with db.begin_nested():
            db.add(conversation)
            db.flush()
    except IntegrityError:
        existing = get_open_conversation(db, contact.id)
        if existing is None:
            raise
        logger.info(
            "Conversation opened concurrently, reusing",
            extra={"context": {"conversation_id": str(existing.id), "contact_id": str(contact.id)}},
        )
        return existing, False

    logger.info(
        "Conversation opened",
        extra={"context": {"conversation_id": str(conversation.id), "contact_id": str(contact.id)}},
    )
    return conversation, True

def lock_conversation(db: Session, conversation_id: UUID) -> Optional[Conversation]:
    return db.query(Conversation).filter(Conversation.id == conversation_id).with_for_update().first()


def register_inbound(db: Session, conversation_id: UUID, now: Optional[datetime] = None) -> Conversation:
    """Apply an inbound customer message: restart the window, bump unread, force open."""
    now = now or datetime.now(timezone.utc)
    conversation = lock_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationActionError("Conversation not found", "not_found", 404)

    conversation.last_customer_message_at = now
    conversation.last_interaction_at = now
    conversation.unread_count = (conversation.unread_count or 0) + 1
    conversation.status = ConversationStatus.OPEN.value
    conversation.updated_at = now
    db.flush()
    return conversation


def touch_interaction(db: Session, conversation: Conversation, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)
    conversation.last_interaction_at = now
    conversation.updated_at = now
    db.flush()


def get_conversation(db: Session, conversation_id: UUID) -> Conversation:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation is None:
        raise ConversationActionError("Conversation not found", "not_found", 404)
    return conversation


def list_conversations(db: Session, status: Optional[str] = None, limit: int = 100) -> list[Conversation]:
    query = db.query(Conversation)
    if status:
        query = query.filter(Conversation.status == status)
    return query.order_by(Conversation.last_interaction_at.desc()).limit(limit).all()


def _apply_transition(db: Session, conversation_id: UUID, action) -> Conversation:
    conversation = lock_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationActionError("Conversation not found", "not_found", 404)
    try:
        new_status = action(ConversationStatus(conversation.status))
    except InvalidTransitionError as e:
        raise ConversationActionError(str(e), "invalid_transition", 409) from e

    try:
        with db.begin_nested():
            conversation.status = new_status.value
            conversation.updated_at = datetime.now(timezone.utc)
    except IntegrityError as e:
        raise ConversationActionError(
            "Contact already has an open conversation",
            "open_conversation_exists",
            409,
        ) from e
    logger.info(
        f"Conversation {new_status.value}",
        extra={"context": {"conversation_id": str(conversation.id)}},
    )
    return conversation


def close_conversation(db: Session, conversation_id: UUID) -> Conversation:
    return _apply_transition(db, conversation_id, close)


def reopen_conversation(db: Session, conversation_id: UUID) -> Conversation:
    """Reopen unless the contact already has another open conversation."""
    conversation = get_conversation(db, conversation_id)
    other_open = get_open_conversation(db, conversation.contact_id)
    if other_open is not None and other_open.id != conversation.id:
        raise ConversationActionError(
            "Contact already has an open conversation",
            "open_conversation_exists",
            409,
        )
    return _apply_transition(db, conversation_id, reopen)


def assign_conversation(db: Session, conversation_id: UUID, staff_id: str) -> Conversation:
    """Take over: assign to staff and disable automation in one update."""
    if not staff_id:
        raise ConversationActionError("Staff id is required", "staff_required", 422)
    conversation = lock_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationActionError("Conversation not found", "not_found", 404)

    conversation.assigned_to = staff_id
    conversation.automation_enabled = False
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(
        "Conversation assigned",
        extra={"context": {"conversation_id": str(conversation.id), "staff_id": staff_id}},
    )
    return conversation


def set_automation(db: Session, conversation_id: UUID, enabled: Optional[bool] = None) -> Conversation:
    """Set the automation flag, or toggle it when `enabled` is None."""
    conversation = lock_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationActionError("Conversation not found", "not_found", 404)

    conversation.automation_enabled = (not conversation.automation_enabled) if enabled is None else enabled
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
    return conversation


def mark_conversation_read(db: Session, conversation_id: UUID) -> Conversation:
    conversation = get_conversation(db, conversation_id)
    conversation.unread_count = 0
    db.flush()
    return conversation


def create_contact(
    db: Session,
    wa_id: str,
    name: Optional[str] = None,
    phone_number: Optional[str] = None,
    status: str = "new",
) -> tuple[Contact, Conversation, bool]:
    """Staff-created contact with its initial open conversation.

    Returns the existing contact and conversation when `wa_id` is known.
    """
    existing = get_contact_by_wa_id(db, wa_id)
    if existing is not None:
        conversation, _ = resolve_conversation(db, existing)
        return existing, conversation, False

    now = datetime.now(timezone.utc)
    contact, created = _insert_contact(
        db,
        Contact(
            wa_id=wa_id,
            phone_number=phone_number or wa_id,
            name=name or wa_id,
            status=status,
            created_at=now,
            updated_at=now,
        ),
    )
    conversation, _ = resolve_conversation(db, contact, now=now)
    return contact, conversation, created
