from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from inbox.database import get_db
from inbox.logging_config import get_logger
from inbox.models import Conversation
from inbox.schemas.conversation import (
    ActionError,
    AssignRequest,
    AutomationRequest,
    ContactSummary,
    ConversationOut,
    MessageOut,
    SendResponse,
    SendTemplateRequest,
    SendTextRequest,
)
from inbox.services.conversation_service import (
    assign_conversation,
    close_conversation,
    get_conversation,
    list_conversations,
    mark_conversation_read,
    reopen_conversation,
    set_automation,
)
from inbox.services.dispatch_service import OutboundContent, OutboundTemplate, OutboundText, send_outbound
from inbox.services.errors import ConversationActionError
from inbox.services.event_service import (
    MESSAGE_RECEIVED,
    EventPublisher,
    build_message_received_payload,
    get_event_publisher,
    publish_safely,
)
from inbox.services.message_service import get_last_message, list_messages
from inbox.services.state_machine import is_inside_window
from inbox.services.whatsapp_service import WhatsAppClient, get_whatsapp_client

logger = get_logger("conversations")

router = APIRouter(prefix="/api")


def _error_response(error: ConversationActionError) -> JSONResponse:
    body = ActionError(error=error.message, error_code=error.code)
    return JSONResponse(status_code=error.status_code, content=body.model_dump())


def _conversation_out(db: Session, conversation: Conversation, now: Optional[datetime] = None) -> ConversationOut:
    last_message = get_last_message(db, conversation.id)
    return ConversationOut(
        id=conversation.id,
        status=conversation.status,
        assigned_to=conversation.assigned_to,
        automation_enabled=conversation.automation_enabled,
        unread_count=conversation.unread_count,
        last_customer_message_at=conversation.last_customer_message_at,
        last_interaction_at=conversation.last_interaction_at,
        inside_window=is_inside_window(conversation.last_customer_message_at, now),
        contact=ContactSummary.model_validate(conversation.contact),
        last_message=MessageOut.model_validate(last_message) if last_message else None,
    )


@router.get("/conversations", response_model=list[ConversationOut])
def get_conversations(status: Optional[str] = None, limit: int = 100, db: Session = Depends(get_db)):
    now = datetime.now(timezone.utc)
    conversations = list_conversations(db, status=status, limit=min(max(limit, 1), 500))
    return [_conversation_out(db, c, now) for c in conversations]


@router.get("/conversations/{conversation_id}", response_model=ConversationOut)
def get_conversation_detail(conversation_id: UUID, db: Session = Depends(get_db)):
    try:
        conversation = get_conversation(db, conversation_id)
    except ConversationActionError as e:
        return _error_response(e)
    return _conversation_out(db, conversation)


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageOut])
def get_conversation_messages(conversation_id: UUID, db: Session = Depends(get_db)):
    try:
        get_conversation(db, conversation_id)
    except ConversationActionError as e:
        return _error_response(e)
    return [MessageOut.model_validate(m) for m in list_messages(db, conversation_id)]


def _send(
    db: Session,
    conversation_id: UUID,
    content: OutboundContent,
    client: WhatsAppClient,
    publisher: EventPublisher,
    require_window: bool,
):
    try:
        conversation = get_conversation(db, conversation_id)
        if require_window and not is_inside_window(conversation.last_customer_message_at):
            raise ConversationActionError(
                "The 24-hour messaging window is closed; send a template instead",
                "window_closed",
                422,
            )
    except ConversationActionError as e:
        return _error_response(e)

    contact = conversation.contact
    message, result = send_outbound(db, client, conversation, contact, content)
    db.commit()

    publish_safely(
        publisher,
        MESSAGE_RECEIVED,
        build_message_received_payload(message, conversation, contact),
        conversation_id=conversation.id,
    )

    response = SendResponse(
        success=result.ok,
        message=MessageOut.model_validate(message),
        error=result.error,
        error_code=result.error_code,
    )
    if not result.ok:
        return JSONResponse(status_code=422, content=response.model_dump(mode="json"))
    return response


@router.post("/conversations/{conversation_id}/messages", response_model=SendResponse)
def send_message(
    conversation_id: UUID,
    request: SendTextRequest,
    db: Session = Depends(get_db),
    client: WhatsAppClient = Depends(get_whatsapp_client),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Staff free-form reply, only inside the messaging window."""
    return _send(db, conversation_id, OutboundText(request.body), client, publisher, require_window=True)


@router.post("/conversations/{conversation_id}/template", response_model=SendResponse)
def send_template(
    conversation_id: UUID,
    request: SendTemplateRequest,
    db: Session = Depends(get_db),
    client: WhatsAppClient = Depends(get_whatsapp_client),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    content = OutboundTemplate(request.template_name, request.language_code, request.components)
    return _send(db, conversation_id, content, client, publisher, require_window=False)


def _apply(db: Session, action, *args):
    try:
        conversation = action(db, *args)
        db.commit()
    except ConversationActionError as e:
        db.rollback()
        return _error_response(e)
    return _conversation_out(db, conversation)


@router.post("/conversations/{conversation_id}/close", response_model=ConversationOut)
def close(conversation_id: UUID, db: Session = Depends(get_db)):
    return _apply(db, close_conversation, conversation_id)


@router.post("/conversations/{conversation_id}/reopen", response_model=ConversationOut)
def reopen(conversation_id: UUID, db: Session = Depends(get_db)):
    return _apply(db, reopen_conversation, conversation_id)


@router.post("/conversations/{conversation_id}/assign", response_model=ConversationOut)
def assign(
    conversation_id: UUID,
    request: Optional[AssignRequest] = Body(default=None),
    x_staff_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    """Take over: assign to the acting staff member and disable automation."""
    staff_id = x_staff_id or (request.staff_id if request else None)
    return _apply(db, assign_conversation, conversation_id, staff_id)


@router.post("/conversations/{conversation_id}/automation", response_model=ConversationOut)
def toggle_automation(
    conversation_id: UUID,
    request: Optional[AutomationRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    enabled = request.enabled if request else None
    return _apply(db, set_automation, conversation_id, enabled)


@router.post("/conversations/{conversation_id}/read", response_model=ConversationOut)
def mark_read(conversation_id: UUID, db: Session = Depends(get_db)):
    return _apply(db, mark_conversation_read, conversation_id)
