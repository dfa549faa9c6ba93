from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from inbox.logging_config import get_logger
from inbox.services.errors import ProviderUnavailableError
from inbox.services.whatsapp_service import WhatsAppClient, get_whatsapp_client

logger = get_logger("whatsapp")

router = APIRouter(prefix="/api")


@router.get("/templates")
def list_templates(client: WhatsAppClient = Depends(get_whatsapp_client)):
    """Approved template catalog of the business account."""
    try:
        result = client.get_templates()
    except ProviderUnavailableError as e:
        return JSONResponse(
            status_code=502,
            content={"success": False, "templates": [], "error": e.message, "error_code": "provider_unreachable"},
        )

    if not result.ok:
        return JSONResponse(
            status_code=422,
            content={"success": False, "templates": [], "error": result.error, "error_code": result.error_code},
        )
    return {"success": True, "templates": result.value}


@router.get("/whatsapp/status")
def whatsapp_status(client: WhatsAppClient = Depends(get_whatsapp_client)):
    return client.config_status()
