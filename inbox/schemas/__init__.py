from inbox.schemas.contact import ContactCreateRequest, ContactCreateResponse
from inbox.schemas.conversation import ConversationOut, MessageOut
from inbox.schemas.webhook import WebhookAck, WebhookPayload

__all__ = [
    "ContactCreateRequest",
    "ContactCreateResponse",
    "ConversationOut",
    "MessageOut",
    "WebhookAck",
    "WebhookPayload",
]
