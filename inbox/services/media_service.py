"""Inbound media retrieval.

Provider media URLs expire within minutes, so media is downloaded once and
served from local storage under `/media/...`.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from inbox.config import settings
from inbox.logging_config import get_logger
from inbox.models import Message
from inbox.services.errors import ProviderUnavailableError
from inbox.services.whatsapp_service import WhatsAppClient

logger = get_logger("media_service")

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/aac": ".aac",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "application/pdf": ".pdf",
    "text/plain": ".txt",
    "audio/amr": ".amr",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}

SAFE_EXTENSIONS = frozenset(MIME_EXTENSIONS.values())
EXTENSION_MIME_TYPES = {ext: mime for mime, ext in MIME_EXTENSIONS.items()}


def _guess_extension(mime: Optional[str], file_name: Optional[str] = None) -> str:
    """Extension for stored media, always one of SAFE_EXTENSIONS or `.bin`.

    The mime type decides; a customer-supplied filename suffix is only used
    when the mime type is unknown and the suffix is on the allowlist.
    """
    if mime:
        base = mime.split(";")[0].strip().lower()
        if base in MIME_EXTENSIONS:
            return MIME_EXTENSIONS[base]
    if file_name:
        suffix = Path(file_name).suffix.lower()
        if suffix in SAFE_EXTENSIONS:
            return suffix
    return ".bin"


def media_type_for(path: Path) -> str:
    return EXTENSION_MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")


def media_relative_path(media_id: str, mime: Optional[str], file_name: Optional[str] = None, now=None) -> str:
    now = now or datetime.now(timezone.utc)
    safe_id = "".join(ch for ch in media_id if ch.isalnum() or ch in "-_")
    return f"{now:%Y}/{now:%m}/whatsapp_{safe_id}{_guess_extension(mime, file_name)}"


def store_media(relative_path: str, data: bytes, storage_dir: Optional[str] = None) -> Path:
    base_dir = Path(storage_dir or settings.media_storage_dir)
    target = base_dir / relative_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return target


def public_media_url(relative_path: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/media/{relative_path}"


def fetch_media(
    db: Session,
    client: WhatsAppClient,
    message_id: UUID,
    storage_dir: Optional[str] = None,
) -> Optional[str]:
    """Download the message's media and set `media_url`.

    Failures are logged and leave `media_url` null; they never raise.
    """
    message = db.query(Message).filter(Message.id == message_id).first()
    if message is None or not message.media_id:
        logger.warning("Media fetch for unknown message", extra={"context": {"message_id": str(message_id)}})
        return None

    context = {"message_id": str(message.id), "media_id": message.media_id}
    try:
        info = client.get_media_info(message.media_id)
        if not info.ok:
            logger.warning(f"Media lookup failed: {info.error}", extra={"context": context})
            return None

        mime = info.value.get("mime_type") or message.media_mime_type
        download = client.download_media(info.value["url"])
        if not download.ok:
            logger.warning(f"Media download failed: {download.error}", extra={"context": context})
            return None
    except ProviderUnavailableError as e:
        logger.warning(f"Media fetch failed: {e.message}", extra={"context": context})
        return None

    relative_path = media_relative_path(message.media_id, mime, message.media_filename)
    try:
        store_media(relative_path, download.value, storage_dir)
    except OSError as e:
        logger.error(f"Media store failed: {e}", extra={"context": context})
        return None

    message.media_url = public_media_url(relative_path)
    if mime and not message.media_mime_type:
        message.media_mime_type = mime
    message.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info("Media stored", extra={"context": {**context, "path": relative_path}})
    return message.media_url


def resolve_media_path(media_path: str, storage_dir: Optional[str] = None) -> Optional[Path]:
    """Resolve a relative media path inside the storage dir, or None when it escapes it."""
    normalized = (media_path or "").strip().lstrip("/")
    if not normalized:
        return None
    base_dir = Path(storage_dir or settings.media_storage_dir).resolve()
    target = (base_dir / normalized).resolve()
    if base_dir not in target.parents:
        return None
    return target
