"""Database-backed background task queue (outbox table drained by a worker)."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from inbox.config import settings
from inbox.database import SessionLocal
from inbox.logging_config import LoggerAdapter, get_logger
from inbox.models import QueuedTask
from inbox.services.alert_service import alert_critical

logger = get_logger("task_queue")

WEBHOOK_BATCH = "webhook.process_batch"
FETCH_MEDIA = "message.fetch_media"
MARK_READ = "message.mark_read"
GENERATE_REPLY = "ai.generate_reply"


@dataclass(frozen=True)
class TaskSpec:
    queue: str
    max_attempts: int = 1
    backoff_seconds: float = 0.0
    delay_seconds: float = 0.0


TASK_SPECS = {
    WEBHOOK_BATCH: TaskSpec(queue="webhooks", max_attempts=3, backoff_seconds=10),
    FETCH_MEDIA: TaskSpec(queue="media"),
    MARK_READ: TaskSpec(queue="media"),
    GENERATE_REPLY: TaskSpec(queue="ai-responses", max_attempts=2, backoff_seconds=5, delay_seconds=1),
}

_DEFAULT_SPEC = TaskSpec(queue="default")


class TaskQueue(ABC):
    """At-least-once background work with attempt counting and backoff."""

    @abstractmethod
    def enqueue(
        self,
        task_name: str,
        payload: dict,
        *,
        queue: Optional[str] = None,
        delay_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> str:
        pass


class DatabaseTaskQueue(TaskQueue):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def enqueue(
        self,
        task_name: str,
        payload: dict,
        *,
        queue: Optional[str] = None,
        delay_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> str:
        spec = TASK_SPECS.get(task_name, _DEFAULT_SPEC)
        now = datetime.now(timezone.utc)
        delay = spec.delay_seconds if delay_seconds is None else delay_seconds
        task = QueuedTask(
            queue=queue or spec.queue,
            task_name=task_name,
            payload_json=payload,
            status="PENDING",
            attempts=0,
            max_attempts=max_attempts or spec.max_attempts,
            backoff_seconds=spec.backoff_seconds if backoff_seconds is None else backoff_seconds,
            next_attempt_at=now + timedelta(seconds=delay) if delay else now,
            created_at=now,
            updated_at=now,
        )
        db = self._session_factory()
        try:
            db.add(task)
            db.commit()
            task_id = str(task.id)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.debug("Task enqueued", extra={"context": {"task_id": task_id, "task": task_name, "queue": task.queue}})
        return task_id


def _as_claimed(task: QueuedTask) -> dict[str, Any]:
    return {
        "id": task.id,
        "task_name": task.task_name,
        "queue": task.queue,
        "payload": dict(task.payload_json or {}),
        "attempts": task.attempts,
        "max_attempts": task.max_attempts,
        "backoff_seconds": task.backoff_seconds or 0,
    }


def claim_due_tasks(
    db: Session,
    *,
    limit: int = 10,
    queues: Optional[list[str]] = None,
    now: Optional[datetime] = None,
    lease_seconds: Optional[float] = None,
) -> list[dict[str, Any]]:
    """Claim due tasks (FOR UPDATE SKIP LOCKED) and mark them PROCESSING.

    Due means PENDING past `next_attempt_at`, or PROCESSING with an expired
    lease. A reclaimed task whose attempts are used up is marked FAILED.
    """
    now = now or datetime.now(timezone.utc)
    lease = settings.task_lease_seconds if lease_seconds is None else lease_seconds
    lease_expired_before = now - timedelta(seconds=lease)
    query = db.query(QueuedTask).filter(
        or_(
            and_(
                QueuedTask.status == "PENDING",
                or_(QueuedTask.next_attempt_at.is_(None), QueuedTask.next_attempt_at <= now),
            ),
            and_(QueuedTask.status == "PROCESSING", QueuedTask.updated_at < lease_expired_before),
        )
    )
    if queues:
        query = query.filter(QueuedTask.queue.in_(queues))
    tasks = query.order_by(QueuedTask.created_at).limit(limit).with_for_update(skip_locked=True).all()

    claimed = []
    exhausted = []
    for task in tasks:
        if task.status == "PROCESSING":
            logger.warning(
                "Task lease expired, reclaiming",
                extra={"context": {"task_id": str(task.id), "task": task.task_name, "attempts": task.attempts}},
            )
            if (task.attempts or 0) >= task.max_attempts:
                task.status = "FAILED"
                task.last_error = "lease_expired"
                task.updated_at = now
                exhausted.append(_as_claimed(task))
                continue
        task.status = "PROCESSING"
        task.attempts = (task.attempts or 0) + 1
        task.updated_at = now
        claimed.append(_as_claimed(task))
    db.commit()

    for task in exhausted:
        on_permanent_failure(task, "lease_expired")
    return claimed


def _update_task(db: Session, task_id, **values) -> None:
    values["updated_at"] = datetime.now(timezone.utc)
    db.query(QueuedTask).filter(QueuedTask.id == task_id).update(values, synchronize_session=False)
    db.commit()


def mark_task_done(db: Session, task_id) -> None:
    _update_task(db, task_id, status="DONE", last_error=None)


def reschedule_task(db: Session, task_id, *, error: str, delay_seconds: float) -> None:
    _update_task(
        db,
        task_id,
        status="PENDING",
        last_error=error,
        next_attempt_at=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds),
    )


def mark_task_failed(db: Session, task_id, *, error: str) -> None:
    _update_task(db, task_id, status="FAILED", last_error=error)


def _failure_context(task: dict) -> dict:
    context = {
        "task_id": str(task["id"]),
        "task": task["task_name"],
        "attempts": task["attempts"],
    }
    for key in ("conversation_id", "message_id", "contact_id", "wam_id"):
        if task["payload"].get(key):
            context[key] = task["payload"][key]
    return context


def on_permanent_failure(task: dict, error: str) -> None:
    """Exhausted retries: CRITICAL log and operator alert. Committed state stays as is."""
    context = _failure_context(task)
    logger.critical(f"Task permanently failed: {error}", extra={"context": context})
    alert_critical(f"Task {task['task_name']} failed after {task['attempts']} attempts: {error}", context)


TaskHandler = Callable[[Session, dict], None]


def run_task(db: Session, task: dict, handlers: dict[str, TaskHandler]) -> str:
    """Run one claimed task in its own session. Returns the resulting status."""
    log = LoggerAdapter(logger, {"task_id": str(task["id"]), "task": task["task_name"]})
    handler = handlers.get(task["task_name"])
    if handler is None:
        log.error("No handler registered for task")
        mark_task_failed(db, task["id"], error="no_handler")
        return "FAILED"

    try:
        handler(db, task["payload"])
        db.commit()
    except Exception as exc:
        db.rollback()
        error = str(exc) or exc.__class__.__name__
        if task["attempts"] < task["max_attempts"]:
            log.warning(
                f"Task failed, retrying: {error}",
                context={"attempts": task["attempts"], "max_attempts": task["max_attempts"]},
            )
            reschedule_task(db, task["id"], error=error, delay_seconds=task["backoff_seconds"])
            return "PENDING"
        mark_task_failed(db, task["id"], error=error)
        on_permanent_failure(task, error)
        return "FAILED"

    mark_task_done(db, task["id"])
    return "DONE"


def process_due_tasks(
    session_factory: Callable[[], Session],
    handlers: dict[str, TaskHandler],
    *,
    limit: int = 10,
    queues: Optional[list[str]] = None,
    now: Optional[datetime] = None,
) -> dict[str, int]:
    """Claim a batch and run each task with a fresh session."""
    claim_db = session_factory()
    try:
        tasks = claim_due_tasks(claim_db, limit=limit, queues=queues, now=now)
    finally:
        claim_db.close()

    results = {"claimed": len(tasks), "done": 0, "retried": 0, "failed": 0}
    for task in tasks:
        db = session_factory()
        try:
            status = run_task(db, task, handlers)
        finally:
            db.close()
        if status == "DONE":
            results["done"] += 1
        elif status == "PENDING":
            results["retried"] += 1
        else:
            results["failed"] += 1
    return results


_queue: Optional[TaskQueue] = None


def get_task_queue() -> TaskQueue:
    global _queue
    if _queue is None:
        _queue = DatabaseTaskQueue()
    return _queue
