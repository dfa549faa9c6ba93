from datetime import datetime, timedelta, timezone

import pytest

from inbox.models import Conversation, Message
from inbox.services.conversation_service import register_inbound, resolve_contact, resolve_conversation
from inbox.services.message_content import TextContent
from inbox.services.message_service import save_message
from inbox.services.result import Result


@pytest.fixture
def conversation_id(db):
    contact, _ = resolve_contact(db, "15554443333", "Ivan")
    conversation, _ = resolve_conversation(db, contact)
    register_inbound(db, conversation.id)
    save_message(db, conversation.id, "inbound", TextContent("Hello?"), status="delivered", wam_id="wamid.IN1")
    db.commit()
    conversation_id = conversation.id
    db.close()
    return conversation_id


def _expire_window(session_factory, conversation_id):
    session = session_factory()
    try:
        conversation = session.query(Conversation).filter(Conversation.id == conversation_id).one()
        conversation.last_customer_message_at = datetime.now(timezone.utc) - timedelta(hours=25)
        session.commit()
    finally:
        session.close()


class TestQueries:
    def test_list_conversations(self, client, conversation_id):
        response = client.get("/api/conversations")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        item = data[0]
        assert item["id"] == str(conversation_id)
        assert item["contact"]["name"] == "Ivan"
        assert item["unread_count"] == 1
        assert item["inside_window"] is True
        assert item["last_message"]["body"] == "Hello?"

    def test_messages_chronological(self, client, conversation_id, whatsapp_client):
        client.post(f"/api/conversations/{conversation_id}/messages", json={"body": "Hi Ivan"})

        response = client.get(f"/api/conversations/{conversation_id}/messages")

        bodies = [m["body"] for m in response.json()]
        assert bodies == ["Hello?", "Hi Ivan"]

    def test_unknown_conversation(self, client):
        response = client.get("/api/conversations/00000000-0000-0000-0000-000000000000/messages")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Conversation not found", "error_code": "not_found"}


class TestSend:
    def test_send_inside_window(self, client, conversation_id, whatsapp_client, publisher):
        response = client.post(f"/api/conversations/{conversation_id}/messages", json={"body": "We are open"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"]["status"] == "sent"
        assert data["message"]["wam_id"] == "wamid.OUTBOUND1"
        assert whatsapp_client.sent[0]["to"] == "15554443333"
        assert publisher.names() == ["message.received"]

    def test_send_outside_window_refused(self, client, conversation_id, session_factory, whatsapp_client):
        _expire_window(session_factory, conversation_id)

        response = client.post(f"/api/conversations/{conversation_id}/messages", json={"body": "Late reply"})

        assert response.status_code == 422
        assert response.json()["error_code"] == "window_closed"
        assert whatsapp_client.sent == []

    def test_template_allowed_outside_window(self, client, conversation_id, session_factory, whatsapp_client):
        _expire_window(session_factory, conversation_id)

        response = client.post(
            f"/api/conversations/{conversation_id}/template",
            json={"template_name": "follow_up", "language_code": "en_US"},
        )

        assert response.status_code == 200
        assert whatsapp_client.sent[0]["template"]["name"] == "follow_up"

    def test_provider_failure_reported(self, client, conversation_id, whatsapp_client, session_factory):
        whatsapp_client.send_result = Result.failure("Recipient phone number not valid", "invalid_request")

        response = client.post(f"/api/conversations/{conversation_id}/messages", json={"body": "Hi"})

        assert response.status_code == 422
        data = response.json()
        assert data["success"] is False
        assert data["error_code"] == "invalid_request"
        assert data["message"]["status"] == "failed"

        session = session_factory()
        try:
            outbound = session.query(Message).filter(Message.direction == "outbound").one()
            assert outbound.error == "Recipient phone number not valid"
        finally:
            session.close()

    def test_empty_body_rejected(self, client, conversation_id):
        response = client.post(f"/api/conversations/{conversation_id}/messages", json={"body": ""})
        assert response.status_code == 422


class TestCommands:
    def test_close_and_reopen(self, client, conversation_id):
        closed = client.post(f"/api/conversations/{conversation_id}/close")
        assert closed.status_code == 200
        assert closed.json()["status"] == "closed"

        reopened = client.post(f"/api/conversations/{conversation_id}/reopen")
        assert reopened.json()["status"] == "open"

    def test_close_twice_conflict(self, client, conversation_id):
        client.post(f"/api/conversations/{conversation_id}/close")
        response = client.post(f"/api/conversations/{conversation_id}/close")

        assert response.status_code == 409
        assert response.json()["error_code"] == "invalid_transition"

    def test_assign_with_header(self, client, conversation_id):
        response = client.post(f"/api/conversations/{conversation_id}/assign", headers={"X-Staff-Id": "staff-1"})

        data = response.json()
        assert data["assigned_to"] == "staff-1"
        assert data["automation_enabled"] is False

    def test_assign_with_body(self, client, conversation_id):
        response = client.post(f"/api/conversations/{conversation_id}/assign", json={"staff_id": "staff-2"})
        assert response.json()["assigned_to"] == "staff-2"

    def test_assign_without_staff(self, client, conversation_id):
        response = client.post(f"/api/conversations/{conversation_id}/assign")
        assert response.status_code == 422
        assert response.json()["error_code"] == "staff_required"

    def test_toggle_and_set_automation(self, client, conversation_id):
        toggled = client.post(f"/api/conversations/{conversation_id}/automation")
        assert toggled.json()["automation_enabled"] is False

        enabled = client.post(f"/api/conversations/{conversation_id}/automation", json={"enabled": True})
        assert enabled.json()["automation_enabled"] is True

    def test_mark_read(self, client, conversation_id):
        response = client.post(f"/api/conversations/{conversation_id}/read")
        assert response.json()["unread_count"] == 0
