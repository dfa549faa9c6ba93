import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from inbox.models import Contact, Conversation
from inbox.services import conversation_service
from inbox.services.conversation_service import (
    assign_conversation,
    close_conversation,
    create_contact,
    get_open_conversation,
    mark_conversation_read,
    register_inbound,
    reopen_conversation,
    resolve_contact,
    resolve_conversation,
    set_automation,
)
from inbox.services.errors import ConversationActionError


@pytest.fixture
def conversation(db):
    contact, _ = resolve_contact(db, "15557654321", "Carol")
    conversation, _ = resolve_conversation(db, contact)
    db.commit()
    return conversation


class TestContactDirectory:
    def test_resolve_creates_once(self, db):
        first, created = resolve_contact(db, "15550000001", "Dana")
        second, created_again = resolve_contact(db, "15550000001", None)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert second.profile_name == "Dana"

    def test_create_contact_opens_conversation(self, db):
        contact, conversation, created = create_contact(db, "15550000002", name="Eve", status="lead")

        assert created is True
        assert contact.status == "lead"
        assert conversation.status == "open"
        assert conversation.automation_enabled is True

    def test_create_contact_returns_existing(self, db):
        contact, conversation, _ = create_contact(db, "15550000003")
        again, same_conversation, created = create_contact(db, "15550000003", name="Other")

        assert created is False
        assert again.id == contact.id
        assert same_conversation.id == conversation.id


class TestStateCommands:
    def test_close_then_reopen(self, db, conversation):
        close_conversation(db, conversation.id)
        assert conversation.status == "closed"

        reopen_conversation(db, conversation.id)
        assert conversation.status == "open"

    def test_close_twice_is_invalid(self, db, conversation):
        close_conversation(db, conversation.id)
        with pytest.raises(ConversationActionError) as exc:
            close_conversation(db, conversation.id)
        assert exc.value.code == "invalid_transition"
        assert exc.value.status_code == 409

    def test_reopen_refuses_second_open_conversation(self, db, conversation):
        close_conversation(db, conversation.id)
        contact = db.query(Contact).one()
        newer, created = resolve_conversation(db, contact)
        assert created is True

        with pytest.raises(ConversationActionError) as exc:
            reopen_conversation(db, conversation.id)
        assert exc.value.code == "open_conversation_exists"
        assert db.query(Conversation).filter(Conversation.status == "open").count() == 1

    def test_assign_disables_automation(self, db, conversation):
        assign_conversation(db, conversation.id, "staff-7")

        assert conversation.assigned_to == "staff-7"
        assert conversation.automation_enabled is False

    def test_assign_requires_staff(self, db, conversation):
        with pytest.raises(ConversationActionError):
            assign_conversation(db, conversation.id, "")

    def test_toggle_automation(self, db, conversation):
        set_automation(db, conversation.id)
        assert conversation.automation_enabled is False
        set_automation(db, conversation.id)
        assert conversation.automation_enabled is True
        set_automation(db, conversation.id, enabled=True)
        assert conversation.automation_enabled is True

    def test_mark_read_resets_unread(self, db, conversation):
        register_inbound(db, conversation.id)
        register_inbound(db, conversation.id)
        assert conversation.unread_count == 2

        mark_conversation_read(db, conversation.id)
        assert conversation.unread_count == 0

    def test_register_inbound_reopens_closed(self, db, conversation):
        close_conversation(db, conversation.id)
        previous = conversation.last_interaction_at

        register_inbound(db, conversation.id)

        assert conversation.status == "open"
        assert conversation.last_customer_message_at is not None
        assert conversation.last_interaction_at != previous

    def test_unknown_conversation(self, db):
        with pytest.raises(ConversationActionError) as exc:
            close_conversation(db, uuid.uuid4())
        assert exc.value.status_code == 404

    def test_get_open_conversation(self, db, conversation):
        assert get_open_conversation(db, conversation.contact_id).id == conversation.id
        close_conversation(db, conversation.id)
        assert get_open_conversation(db, conversation.contact_id) is None


class TestConcurrentCreation:
    """A second session that read before the first one committed."""

    def test_contact_insert_race_reuses_winner(self, db, session_factory, monkeypatch):
        winner, _ = resolve_contact(db, "15550000009", "Fay")
        db.commit()
        winner_id = winner.id

        monkeypatch.setattr(conversation_service, "get_contact_by_wa_id", lambda session, wa_id: None)
        other = session_factory()
        try:
            contact, created = resolve_contact(other, "15550000009", "Fay")
            other.commit()

            assert created is False
            assert contact.id == winner_id
            assert other.query(Contact).count() == 1
        finally:
            other.close()

    def test_open_conversation_race_reuses_winner(self, db, session_factory, monkeypatch, conversation):
        winner_id = conversation.id
        real_lookup = conversation_service.get_open_conversation
        calls = []

        def stale_then_fresh(session, contact_id, for_update=False):
            calls.append(contact_id)
            if len(calls) == 1:
                return None
            return real_lookup(session, contact_id, for_update)

        monkeypatch.setattr(conversation_service, "get_open_conversation", stale_then_fresh)
        other = session_factory()
        try:
            contact = other.query(Contact).one()
            resolved, created = resolve_conversation(other, contact)
            other.commit()

            assert created is False
            assert resolved.id == winner_id
            assert other.query(Conversation).count() == 1
        finally:
            other.close()

    def test_storage_rejects_second_open_conversation(self, db, conversation):
        now = datetime.now(timezone.utc)
        db.add(Conversation(contact_id=conversation.contact_id, status="open", created_at=now))
        with pytest.raises(IntegrityError):
            db.flush()
        db.rollback()

        db.add(Conversation(contact_id=conversation.contact_id, status="closed", created_at=now))
        db.flush()
        assert db.query(Conversation).count() == 2
