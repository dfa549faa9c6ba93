import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TASK_WORKER_ENABLED"] = "false"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["ALERT_BOT_TOKEN"] = ""
os.environ["ALERT_CHAT_ID"] = ""
os.environ["REDIS_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from inbox.config import Settings
from inbox.database import Base, enable_sqlite_savepoints, get_db
from inbox.services.errors import ProviderUnavailableError
from inbox.services.event_service import EventPublisher, get_event_publisher
from inbox.services.result import Result
from inbox.services.settings_service import SettingsStore, get_settings_store
from inbox.services.task_queue import TaskQueue, get_task_queue
from inbox.services.whatsapp_service import WhatsAppClient, get_whatsapp_client


class RecordingPublisher(EventPublisher):
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    def publish(self, channels, event, payload):
        if self.fail:
            raise ConnectionError("redis down")
        self.events.append({"channels": channels, "event": event, "payload": payload})

    def names(self):
        return [e["event"] for e in self.events]


class RecordingTaskQueue(TaskQueue):
    def __init__(self):
        self.tasks = []

    def enqueue(
        self,
        task_name,
        payload,
        *,
        queue=None,
        delay_seconds=None,
        max_attempts=None,
        backoff_seconds=None,
    ):
        self.tasks.append({"task_name": task_name, "payload": payload, "queue": queue})
        return str(len(self.tasks))

    def names(self):
        return [t["task_name"] for t in self.tasks]


class FakeWhatsAppClient(WhatsAppClient):
    """Real payload building, no network."""

    def __init__(self, send_result=None, unavailable: bool = False):
        super().__init__(access_token="test-token", phone_number_id="1234567890")
        self.send_result = send_result or Result.success("wamid.OUTBOUND1")
        self.unavailable = unavailable
        self.sent = []
        self.read = []

    def _send(self, recipient, payload):
        self.sent.append({"to": recipient, **payload})
        if self.unavailable:
            raise ProviderUnavailableError("connection refused")
        return self.send_result

    def mark_as_read(self, wam_id):
        self.read.append(wam_id)
        return True


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'inbox.db'}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _wal(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def env_settings():
    return Settings(
        whatsapp_webhook_verify_token="verify-me",
        whatsapp_access_token="env-token",
        whatsapp_phone_number_id="1234567890",
    )


@pytest.fixture
def settings_store(session_factory, env_settings):
    return SettingsStore(session_factory=session_factory, ttl_seconds=60, env=env_settings)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def failing_publisher():
    return RecordingPublisher(fail=True)


@pytest.fixture
def task_queue():
    return RecordingTaskQueue()


@pytest.fixture
def whatsapp_client():
    return FakeWhatsAppClient()


@pytest.fixture
def client(session_factory, settings_store, publisher, task_queue, whatsapp_client):
    from inbox.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings_store] = lambda: settings_store
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    app.dependency_overrides[get_task_queue] = lambda: task_queue
    app.dependency_overrides[get_whatsapp_client] = lambda: whatsapp_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def webhook_payload():
    def _make(
        wam_id="wamid.INBOUND1",
        sender="15551234567",
        name="Alice",
        message=None,
        statuses=None,
        include_message=True,
    ):
        msg = message or {"type": "text", "text": {"body": "Hi"}}
        messages = []
        if include_message:
            raw = {"timestamp": "1700000000", **msg}
            if wam_id is not None:
                raw["id"] = wam_id
            if sender is not None:
                raw["from"] = sender
            messages.append(raw)
        value = {
            "messaging_product": "whatsapp",
            "metadata": {"phone_number_id": "1234567890"},
            "contacts": [{"wa_id": sender, "profile": {"name": name}}] if sender else [],
            "messages": messages,
        }
        if statuses:
            value["statuses"] = statuses
        return {
            "object": "whatsapp_business_account",
            "entry": [{"id": "WABA1", "changes": [{"field": "messages", "value": value}]}],
        }

    return _make
