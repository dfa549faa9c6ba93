from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from inbox.logging_config import get_logger
from inbox.models import Message
from inbox.services.event_service import (
    MESSAGE_STATUS_UPDATED,
    EventPublisher,
    build_status_updated_payload,
    publish_safely,
)
from inbox.services.message_service import get_message_by_wam_id

logger = get_logger("status_service")

STATUS_MAP = {
    "sent": "sent",
    "delivered": "delivered",
    "read": "read",
    "failed": "failed",
}

# delivery progress only moves forward; failed is terminal
STATUS_RANK = {"pending": 0, "sent": 1, "delivered": 2, "read": 3}


def map_provider_status(status: Optional[str]) -> Optional[str]:
    """Provider status string to stored status; unknown values map to None."""
    if not status:
        return None
    return STATUS_MAP.get(status.lower())


def is_forward_transition(current: Optional[str], new: str) -> bool:
    if current == "failed":
        return False
    if new == "failed":
        return True
    return STATUS_RANK.get(new, 0) > STATUS_RANK.get(current or "pending", 0)


def _error_detail(errors: Optional[list]) -> Optional[str]:
    if not errors:
        return None
    first = errors[0] if isinstance(errors[0], dict) else {}
    parts = [str(first.get("code", "")).strip(), first.get("title") or first.get("message") or ""]
    details = (first.get("error_data") or {}).get("details")
    if details:
        parts.append(details)
    return " ".join(p for p in parts if p) or None


def apply_status(db: Session, event: dict) -> Optional[Message]:
    """Apply one provider status event to the matching stored message.

    Returns the updated message, or None when the status is unknown, stale,
    or no message matches.
    """
    wam_id = event.get("id")
    status = map_provider_status(event.get("status"))
    if not wam_id or status is None:
        logger.debug("Ignoring status event", extra={"context": {"wam_id": wam_id, "status": event.get("status")}})
        return None

    message = get_message_by_wam_id(db, wam_id)
    if message is None:
        logger.debug("Status for unknown message", extra={"context": {"wam_id": wam_id, "status": status}})
        return None

    if not is_forward_transition(message.status, status):
        logger.debug(
            "Stale status ignored",
            extra={"context": {"wam_id": wam_id, "status": status, "current": message.status}},
        )
        return None

    message.status = status
    if status == "failed":
        message.error = _error_detail(event.get("errors")) or message.error
    message.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info("Message status updated", extra={"context": {"wam_id": wam_id, "status": status}})
    return message


def reconcile_statuses(db: Session, events: list[dict], publisher: Optional[EventPublisher] = None) -> int:
    """Apply a batch of status events, committing each. Returns the number applied."""
    applied = 0
    for event in events:
        if not isinstance(event, dict):
            continue
        try:
            message = apply_status(db, event)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Status update failed: {e}", extra={"context": {"wam_id": event.get("id")}})
            continue

        if message is None:
            continue
        applied += 1
        if publisher is not None:
            publish_safely(
                publisher,
                MESSAGE_STATUS_UPDATED,
                build_status_updated_payload(message),
                conversation_id=message.conversation_id,
            )
    return applied
