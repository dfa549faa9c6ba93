"""Standalone task worker: `python -m inbox.worker`."""

import signal
import time

from inbox.config import settings
from inbox.database import SessionLocal, init_db
from inbox.logging_config import get_logger, setup_logging
from inbox.services.task_handlers import build_handlers, build_task_context
from inbox.services.task_queue import process_due_tasks

logger = get_logger("worker")

_running = True


def _stop(signum, frame) -> None:
    global _running
    logger.info("Worker stopping", extra={"context": {"signal": signum}})
    _running = False


def run(queues: list[str] | None = None) -> None:
    handlers = build_handlers(build_task_context(SessionLocal))
    interval_seconds = max(settings.task_worker_interval_seconds, 0.1)
    logger.info("Worker started", extra={"context": {"queues": queues or "all"}})

    while _running:
        try:
            results = process_due_tasks(
                SessionLocal,
                handlers,
                limit=settings.task_worker_batch_size,
                queues=queues,
            )
            if results["claimed"]:
                logger.info("Worker processed", extra={"context": results})
                continue
        except Exception as exc:
            logger.error("Worker iteration failed", extra={"context": {"error": str(exc)}})
        time.sleep(interval_seconds)


def main() -> None:
    setup_logging(settings.log_level)
    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)
    init_db()
    run()


if __name__ == "__main__":
    main()
