from inbox.services.errors import ConversationActionError, LLMError, ProviderUnavailableError
from inbox.services.result import Result
from inbox.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    close,
    is_inside_window,
    reopen,
    transition,
)

__all__ = [
    "ConversationActionError",
    "ConversationStatus",
    "InvalidTransitionError",
    "LLMError",
    "ProviderUnavailableError",
    "Result",
    "can_transition",
    "close",
    "is_inside_window",
    "reopen",
    "transition",
]
