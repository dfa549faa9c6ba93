from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

MESSAGING_WINDOW = timedelta(hours=24)


class ConversationStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


VALID_TRANSITIONS = {
    ConversationStatus.OPEN: [ConversationStatus.CLOSED],
    ConversationStatus.CLOSED: [ConversationStatus.OPEN],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ConversationStatus, to_state: ConversationStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: ConversationStatus, to_state: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: ConversationStatus, to_state: ConversationStatus) -> ConversationStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def close(current_state: ConversationStatus) -> ConversationStatus:
    """Staff closes the conversation."""
    return transition(current_state, ConversationStatus.CLOSED)


def reopen(current_state: ConversationStatus) -> ConversationStatus:
    """Staff reopens a closed conversation."""
    return transition(current_state, ConversationStatus.OPEN)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_inside_window(last_customer_message_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """Free-form replies are allowed for 24h after the customer's last inbound message."""
    anchor = as_utc(last_customer_message_at)
    if anchor is None:
        return False
    now = as_utc(now) or datetime.now(timezone.utc)
    return now - anchor <= MESSAGING_WINDOW


def starts_new_session(last_customer_message_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when an inbound message arrives after a previously expired window."""
    if last_customer_message_at is None:
        return False
    return not is_inside_window(last_customer_message_at, now)
