from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inbox.database import get_db
from inbox.logging_config import get_logger, mask_identifier
from inbox.schemas.contact import ContactCreateRequest, ContactCreateResponse
from inbox.schemas.conversation import ContactSummary
from inbox.services.conversation_service import create_contact

logger = get_logger("contacts")

router = APIRouter(prefix="/api")


@router.post("/contacts", response_model=ContactCreateResponse)
def create(request: ContactCreateRequest, db: Session = Depends(get_db)):
    """Create a contact with an open conversation, or return the existing one."""
    try:
        contact, conversation, created = create_contact(
            db,
            wa_id=request.wa_id,
            name=request.name,
            phone_number=request.phone_number,
            status=request.status,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Contact create raced", extra={"context": {"wa_id": mask_identifier(request.wa_id)}})
        return JSONResponse(
            status_code=409,
            content={"success": False, "error": "Contact already exists", "error_code": "contact_exists"},
        )

    response = ContactCreateResponse(
        contact=ContactSummary.model_validate(contact),
        conversation_id=conversation.id,
        created=created,
    )
    if created:
        return JSONResponse(status_code=201, content=response.model_dump(mode="json"))
    return response
