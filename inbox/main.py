import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from inbox.config import settings
from inbox.database import SessionLocal, check_db_connection, get_db, init_db
from inbox.logging_config import get_logger, setup_logging
from inbox.models import Contact, Conversation, Message, QueuedTask
from inbox.routers import contacts, conversations, webhook, whatsapp
from inbox.routers import settings as settings_router
from inbox.services.task_handlers import build_handlers, build_task_context
from inbox.services.task_queue import process_due_tasks

setup_logging(settings.log_level)

app = FastAPI(
    title="Inbox API",
    description="WhatsApp inbox: webhook ingestion, conversation state and reply dispatch",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(conversations.router)
app.include_router(contacts.router)
app.include_router(whatsapp.router)
app.include_router(settings_router.router)

worker_logger = get_logger("task_worker")
_task_worker: asyncio.Task | None = None


def _is_task_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.task_worker_enabled


async def _task_worker_loop() -> None:
    handlers = build_handlers(build_task_context(SessionLocal))
    interval_seconds = max(settings.task_worker_interval_seconds, 0.1)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            results = await asyncio.to_thread(
                process_due_tasks,
                SessionLocal,
                handlers,
                limit=settings.task_worker_batch_size,
            )
            if results["claimed"]:
                worker_logger.info("Task worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(
                "Task worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_task_worker() -> None:
    global _task_worker
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return
    init_db()
    if not _is_task_worker_enabled():
        return
    if _task_worker is None or _task_worker.done():
        _task_worker = asyncio.create_task(_task_worker_loop())
        worker_logger.info("Task worker started")


@app.on_event("shutdown")
async def stop_task_worker() -> None:
    global _task_worker
    if _task_worker is None:
        return
    _task_worker.cancel()
    try:
        await _task_worker
    except asyncio.CancelledError:
        pass
    _task_worker = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    if not check_db_connection():
        return {"status": "error"}
    return {
        "status": "ok",
        "contacts": db.query(Contact).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "pending_tasks": db.query(QueuedTask).filter(QueuedTask.status == "PENDING").count(),
    }
