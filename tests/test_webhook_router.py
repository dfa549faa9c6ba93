import json

import pytest

from inbox.config import settings
from inbox.models import Message
from inbox.routers.webhook import compute_signature
from inbox.services.task_queue import WEBHOOK_BATCH


class TestVerify:
    def test_valid_token_returns_challenge(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
        )

        assert response.status_code == 200
        assert response.text == "1158201444"
        assert response.headers["content-type"].startswith("text/plain")

    def test_wrong_token_forbidden(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
        )

        assert response.status_code == 403
        assert response.text == "Verification failed"

    def test_wrong_mode_forbidden(self, client):
        response = client.get(
            "/whatsapp/webhook",
            params={"hub.mode": "unsubscribe", "hub.verify_token": "verify-me", "hub.challenge": "1"},
        )
        assert response.status_code == 403

    def test_alias_route(self, client):
        response = client.get(
            "/whatsapp/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "abc"},
        )
        assert response.text == "abc"


class TestReceive:
    def test_queue_mode_acknowledges_and_enqueues(self, client, task_queue, webhook_payload, monkeypatch):
        monkeypatch.setattr(settings, "webhook_processing_mode", "queue")

        response = client.post("/webhook", json=webhook_payload())

        assert response.status_code == 200
        assert response.json() == {"status": "received"}
        assert task_queue.names() == [WEBHOOK_BATCH]
        assert task_queue.tasks[0]["payload"]["body"]["entry"][0]["id"] == "WABA1"

    def test_inline_mode_processes_batch(self, client, task_queue, publisher, db, webhook_payload, monkeypatch):
        monkeypatch.setattr(settings, "webhook_processing_mode", "inline")

        response = client.post("/whatsapp/webhook", json=webhook_payload())

        assert response.status_code == 200
        assert db.query(Message).count() == 1
        assert publisher.names() == ["message.received"]

    def test_unparseable_entries_still_acknowledged(self, client, monkeypatch):
        monkeypatch.setattr(settings, "webhook_processing_mode", "inline")

        response = client.post("/webhook", json={"entry": [{"changes": [{"field": "messages", "value": 5}]}]})

        assert response.status_code == 200
        assert response.json() == {"status": "received"}

    def test_invalid_json_rejected(self, client):
        response = client.post("/webhook", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_enqueue_failure_still_acknowledged(self, client, task_queue, webhook_payload, monkeypatch):
        monkeypatch.setattr(settings, "webhook_processing_mode", "queue")

        def broken(*args, **kwargs):
            raise RuntimeError("db down")

        monkeypatch.setattr(task_queue, "enqueue", broken)

        response = client.post("/webhook", json=webhook_payload())
        assert response.status_code == 200


class TestSignature:
    @pytest.fixture
    def signed_store(self, settings_store):
        settings_store.set("whatsapp_app_secret", "app-secret", "string", "whatsapp")
        return settings_store

    def test_valid_signature_accepted(self, client, signed_store, webhook_payload):
        body = json.dumps(webhook_payload()).encode()

        response = client.post(
            "/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-Hub-Signature-256": compute_signature("app-secret", body)},
        )
        assert response.status_code == 200

    def test_missing_signature_rejected(self, client, signed_store, webhook_payload):
        response = client.post("/webhook", json=webhook_payload())
        assert response.status_code == 401

    def test_bad_signature_rejected(self, client, signed_store):
        response = client.post(
            "/webhook",
            content=b"{}",
            headers={"Content-Type": "application/json", "X-Hub-Signature-256": "sha256=deadbeef"},
        )
        assert response.status_code == 401


class TestMediaRoute:
    def test_serves_stored_file(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "media_storage_dir", str(tmp_path))
        target = tmp_path / "2026" / "03" / "whatsapp_M1.jpg"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"jpeg-bytes")

        response = client.get("/media/2026/03/whatsapp_M1.jpg")

        assert response.status_code == 200
        assert response.content == b"jpeg-bytes"
        assert response.headers["content-type"] == "image/jpeg"
        assert response.headers["content-disposition"].startswith("attachment")
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_unknown_extension_served_as_binary(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "media_storage_dir", str(tmp_path))
        (tmp_path / "page.html").write_text("<script>alert(1)</script>")

        response = client.get("/media/page.html")

        assert response.headers["content-type"] == "application/octet-stream"

    def test_missing_file(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "media_storage_dir", str(tmp_path))
        assert client.get("/media/2026/03/none.jpg").status_code == 404

    def test_traversal_rejected(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "media_storage_dir", str(tmp_path / "media"))
        assert client.get("/media/..%2F..%2Fetc%2Fpasswd").status_code in (400, 404)
