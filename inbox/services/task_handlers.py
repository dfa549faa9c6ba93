"""Handlers for the background tasks the worker knows how to run."""

from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from inbox.database import SessionLocal
from inbox.logging_config import get_logger
from inbox.services.auto_reply_service import build_llm_provider, generate_reply
from inbox.services.event_service import EventPublisher, get_event_publisher
from inbox.services.ingestion_service import process_batch
from inbox.services.llm import LLMProvider
from inbox.services.media_service import fetch_media
from inbox.services.settings_service import SettingsStore, get_settings_store
from inbox.services.task_queue import (
    FETCH_MEDIA,
    GENERATE_REPLY,
    MARK_READ,
    WEBHOOK_BATCH,
    DatabaseTaskQueue,
    TaskHandler,
    TaskQueue,
)
from inbox.services.whatsapp_service import WhatsAppClient, build_whatsapp_client

logger = get_logger("task_handlers")


@dataclass
class TaskContext:
    queue: TaskQueue
    publisher: EventPublisher
    store: SettingsStore
    whatsapp_factory: Callable[[], WhatsAppClient]
    llm_factory: Callable[[], LLMProvider]


def build_task_context(session_factory: Callable[[], Session] = SessionLocal) -> TaskContext:
    store = get_settings_store()
    return TaskContext(
        queue=DatabaseTaskQueue(session_factory),
        publisher=get_event_publisher(),
        store=store,
        whatsapp_factory=lambda: build_whatsapp_client(store),
        llm_factory=lambda: build_llm_provider(store),
    )


def _uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(str(value)) if value else None


def build_handlers(ctx: TaskContext) -> dict[str, TaskHandler]:
    def process_webhook_batch(db: Session, payload: dict) -> None:
        report = process_batch(db, payload.get("body") or {}, queue=ctx.queue, publisher=ctx.publisher)
        if report.failed:
            # stored messages are skipped as duplicates when the batch reruns
            raise RuntimeError(f"{report.failed} webhook message(s) failed to ingest")

    def fetch_message_media(db: Session, payload: dict) -> None:
        fetch_media(db, ctx.whatsapp_factory(), _uuid(payload["message_id"]))

    def mark_message_read(db: Session, payload: dict) -> None:
        if not ctx.whatsapp_factory().mark_as_read(payload["wam_id"]):
            logger.warning(
                "Read receipt not accepted",
                extra={"context": {"wam_id": payload["wam_id"], "message_id": payload.get("message_id")}},
            )

    def generate_ai_reply(db: Session, payload: dict) -> None:
        generate_reply(
            db,
            conversation_id=_uuid(payload["conversation_id"]),
            message_id=_uuid(payload.get("message_id")),
            llm=ctx.llm_factory(),
            client=ctx.whatsapp_factory(),
            publisher=ctx.publisher,
            store=ctx.store,
        )

    return {
        WEBHOOK_BATCH: process_webhook_batch,
        FETCH_MEDIA: fetch_message_media,
        MARK_READ: mark_message_read,
        GENERATE_REPLY: generate_ai_reply,
    }
