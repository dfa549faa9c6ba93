from inbox.models.contact import Contact
from inbox.models.conversation import Conversation
from inbox.models.message import Message
from inbox.models.queued_task import QueuedTask
from inbox.models.setting import Setting

__all__ = [
    "Contact",
    "Conversation",
    "Message",
    "Setting",
    "QueuedTask",
]
