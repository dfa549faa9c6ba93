from datetime import datetime, timezone

import pytest

from inbox.models import Contact, Conversation, Message
from inbox.services.message_service import save_message
from inbox.services.status_service import apply_status, map_provider_status, reconcile_statuses


@pytest.fixture
def outbound(db):
    now = datetime.now(timezone.utc)
    contact = Contact(wa_id="15550001111", name="Bob", status="lead", created_at=now)
    db.add(contact)
    db.flush()
    conversation = Conversation(contact_id=contact.id, status="open", created_at=now)
    db.add(conversation)
    db.flush()
    message = save_message(db, conversation.id, "outbound", status="sent", wam_id="wamid.OUT1", kind="text", body="Hi")
    db.commit()
    return message


class TestMapProviderStatus:
    def test_known_statuses(self):
        for status in ("sent", "delivered", "read", "failed"):
            assert map_provider_status(status) == status

    def test_unknown_status_ignored(self):
        assert map_provider_status("deleted") is None
        assert map_provider_status(None) is None


class TestApplyStatus:
    def test_updates_matching_message(self, db, outbound):
        message = apply_status(db, {"id": "wamid.OUT1", "status": "read"})
        db.commit()

        assert message is not None
        assert db.query(Message).filter(Message.wam_id == "wamid.OUT1").one().status == "read"

    def test_unknown_wam_id_is_noop(self, db, outbound):
        assert apply_status(db, {"id": "wamid.NOPE", "status": "delivered"}) is None
        assert db.query(Message).count() == 1

    def test_unknown_status_is_noop(self, db, outbound):
        assert apply_status(db, {"id": "wamid.OUT1", "status": "warning"}) is None
        assert db.query(Message).one().status == "sent"

    def test_failed_status_stores_error(self, db, outbound):
        apply_status(
            db,
            {
                "id": "wamid.OUT1",
                "status": "failed",
                "errors": [{"code": 131047, "title": "Re-engagement message", "error_data": {"details": "window"}}],
            },
        )
        db.commit()

        message = db.query(Message).one()
        assert message.status == "failed"
        assert "131047" in message.error
        assert "Re-engagement message" in message.error


class TestReconcileStatuses:
    def test_publishes_status_updated(self, db, outbound, publisher):
        applied = reconcile_statuses(db, [{"id": "wamid.OUT1", "status": "delivered"}], publisher)

        assert applied == 1
        assert publisher.names() == ["message.status_updated"]
        assert publisher.events[0]["payload"]["status"] == "delivered"

    def test_unknown_ids_raise_nothing(self, db, publisher):
        applied = reconcile_statuses(db, [{"id": "wamid.X", "status": "read"}, "junk", {}], publisher)

        assert applied == 0
        assert publisher.events == []
        assert db.query(Message).count() == 0


class TestStatusOrdering:
    def test_late_delivered_does_not_undo_read(self, db, outbound, publisher):
        applied = reconcile_statuses(
            db,
            [{"id": "wamid.OUT1", "status": "read"}, {"id": "wamid.OUT1", "status": "delivered"}],
            publisher,
        )

        assert applied == 1
        assert db.query(Message).one().status == "read"
        assert publisher.names() == ["message.status_updated"]

    def test_repeated_status_is_noop(self, db, outbound):
        assert apply_status(db, {"id": "wamid.OUT1", "status": "sent"}) is None

    def test_failed_is_terminal(self, db, outbound):
        apply_status(db, {"id": "wamid.OUT1", "status": "failed", "errors": [{"code": 131026, "title": "Undeliverable"}]})
        db.commit()

        assert apply_status(db, {"id": "wamid.OUT1", "status": "delivered"}) is None
        assert db.query(Message).one().status == "failed"
