import hashlib
import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from inbox.config import settings
from inbox.database import get_db
from inbox.logging_config import get_logger
from inbox.schemas.webhook import WebhookAck
from inbox.services.alert_service import alert_error
from inbox.services.event_service import EventPublisher, get_event_publisher
from inbox.services.ingestion_service import process_batch
from inbox.services.media_service import media_type_for, resolve_media_path
from inbox.services.settings_service import SettingsStore, get_settings_store
from inbox.services.task_queue import WEBHOOK_BATCH, TaskQueue, get_task_queue

logger = get_logger("webhook")

router = APIRouter()

SIGNATURE_HEADER = "X-Hub-Signature-256"


def compute_signature(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature)


@router.get("/webhook")
@router.get("/whatsapp/webhook")
def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    store: SettingsStore = Depends(get_settings_store),
):
    """Provider subscription handshake."""
    expected = store.get("whatsapp_webhook_verify_token", "")
    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info("Webhook verified")
        return PlainTextResponse(hub_challenge or "", status_code=200)

    logger.warning("Webhook verification failed", extra={"context": {"mode": hub_mode}})
    return PlainTextResponse("Verification failed", status_code=403)


@router.post("/webhook", response_model=WebhookAck)
@router.post("/whatsapp/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    queue: TaskQueue = Depends(get_task_queue),
    publisher: EventPublisher = Depends(get_event_publisher),
    store: SettingsStore = Depends(get_settings_store),
):
    """Acknowledge provider events immediately; processing is isolated from the ack."""
    raw_body = await request.body()

    app_secret = store.get("whatsapp_app_secret", "")
    if app_secret and not verify_signature(app_secret, raw_body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Webhook signature verification failed")
        return JSONResponse(status_code=401, content={"status": "error", "error": "invalid_signature"})

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("Webhook body is not JSON", extra={"context": {"size": len(raw_body)}})
        return JSONResponse(status_code=400, content={"status": "error", "error": "invalid_json"})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"status": "error", "error": "invalid_json"})

    if settings.webhook_processing_mode == "inline":
        try:
            await run_in_threadpool(process_batch, db, payload, queue=queue, publisher=publisher)
        except Exception as e:
            logger.error(f"Inline webhook processing failed: {e}", exc_info=True)
    else:
        try:
            await run_in_threadpool(queue.enqueue, WEBHOOK_BATCH, {"body": payload})
        except Exception as e:
            logger.error(f"Failed to enqueue webhook batch: {e}")
            alert_error("Webhook batch could not be queued", {"error": str(e)[:200]})

    return WebhookAck()


@router.get("/media/{media_path:path}")
def serve_media(media_path: str):
    """Serve locally stored inbound media."""
    target_path = resolve_media_path(media_path)
    if target_path is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid media path")
    if not target_path.exists() or not target_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")
    return FileResponse(
        target_path,
        media_type=media_type_for(target_path),
        filename=target_path.name,
        content_disposition_type="attachment",
        headers={"X-Content-Type-Options": "nosniff"},
    )
