"""WhatsApp Cloud API (Graph) client."""

from typing import Optional

import httpx

from inbox.config import settings
from inbox.logging_config import get_logger, mask_identifier
from inbox.services.errors import ProviderUnavailableError
from inbox.services.result import Result
from inbox.services.settings_service import SettingsStore, get_settings_store

logger = get_logger("whatsapp_service")

SEND_TIMEOUT = 30.0
MEDIA_DOWNLOAD_TIMEOUT = 60.0
TEMPLATE_PAGE_LIMIT = 100

NOT_CONFIGURED = "WhatsApp API not configured"


def _error_code_for_status(status_code: int) -> str:
    if status_code in (401, 403):
        return "auth_error"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "invalid_request"
    return "provider_error"


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or "Unknown error"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
    return "Unknown error"


def _is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


UNEXPECTED_RESPONSE = "Unexpected response from WhatsApp API"


def _json_body(response: httpx.Response) -> Optional[dict]:
    """JSON object body of a 2xx response, or None when it is not one."""
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class WhatsAppClient:
    """Outbound calls to the Graph API for one business phone number."""

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        business_account_id: str = "",
        api_version: str = "v18.0",
        graph_url: str = "https://graph.facebook.com",
    ):
        self.access_token = access_token or ""
        self.phone_number_id = phone_number_id or ""
        self.business_account_id = business_account_id or ""
        self.api_version = api_version
        self.api_base = f"{graph_url.rstrip('/')}/{api_version}"
        self.base_url = f"{self.api_base}/{self.phone_number_id}"

    def is_configured(self) -> bool:
        return bool(self.access_token) and bool(self.phone_number_id)

    def config_status(self) -> dict:
        return {
            "is_configured": self.is_configured(),
            "has_phone_number_id": bool(self.phone_number_id),
            "has_access_token": bool(self.access_token),
            "has_business_account_id": bool(self.business_account_id),
            "phone_number_id": f"{self.phone_number_id[:6]}..." if self.phone_number_id else None,
            "api_version": self.api_version,
        }

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        url: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        timeout: float = SEND_TIMEOUT,
    ) -> httpx.Response:
        """Make request to the Graph API. Raises ProviderUnavailableError on transport failure."""
        try:
            with httpx.Client(timeout=timeout) as client:
                return client.request(method, url, headers=self._headers(), json=json, params=params)
        except httpx.TransportError as e:
            logger.error(
                f"WhatsApp API unreachable: {e}",
                extra={"context": {"method": method, "endpoint": url.replace(self.api_base, "")}},
            )
            raise ProviderUnavailableError(str(e) or e.__class__.__name__, endpoint=url) from e

    def _send(self, recipient: str, payload: dict) -> Result[str]:
        if not self.is_configured():
            return Result.failure(NOT_CONFIGURED, "not_configured")

        body = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            **payload,
        }
        response = self._request("POST", f"{self.base_url}/messages", json=body)

        if _is_success(response):
            data = _json_body(response)
            if data is None:
                logger.error(
                    "WhatsApp send returned a non-JSON body",
                    extra={"context": {"status": response.status_code, "recipient": mask_identifier(recipient)}},
                )
                return Result.failure(UNEXPECTED_RESPONSE, "provider_error")
            messages = data.get("messages") or [{}]
            message_id = messages[0].get("id")
            logger.info(
                "WhatsApp message sent",
                extra={"context": {"recipient": mask_identifier(recipient), "wam_id": message_id}},
            )
            return Result.success(message_id)

        error = _error_message(response)
        logger.error(
            f"WhatsApp send failed: {error}",
            extra={
                "context": {
                    "status": response.status_code,
                    "recipient": mask_identifier(recipient),
                    "type": payload.get("type"),
                }
            },
        )
        return Result.failure(error, _error_code_for_status(response.status_code))

    def send_text(self, recipient: str, body: str) -> Result[str]:
        return self._send(recipient, {"type": "text", "text": {"preview_url": False, "body": body}})

    def send_image(self, recipient: str, image_url: str, caption: Optional[str] = None) -> Result[str]:
        image = {"link": image_url}
        if caption:
            image["caption"] = caption
        return self._send(recipient, {"type": "image", "image": image})

    def send_template(
        self,
        recipient: str,
        template_name: str,
        language_code: str = "en_US",
        components: Optional[list] = None,
    ) -> Result[str]:
        template = {"name": template_name, "language": {"code": language_code}}
        if components:
            template["components"] = components
        return self._send(recipient, {"type": "template", "template": template})

    def mark_as_read(self, wam_id: str) -> bool:
        """Best-effort read receipt; never raises."""
        if not self.is_configured():
            return False
        try:
            response = self._request(
                "POST",
                f"{self.base_url}/messages",
                json={"messaging_product": "whatsapp", "status": "read", "message_id": wam_id},
            )
        except ProviderUnavailableError as e:
            logger.warning(f"Failed to mark message as read: {e.message}", extra={"context": {"wam_id": wam_id}})
            return False
        return _is_success(response)

    def get_media_info(self, media_id: str) -> Result[dict]:
        """Resolve a media id to its short-lived download URL and mime type."""
        if not self.is_configured():
            return Result.failure(NOT_CONFIGURED, "not_configured")

        response = self._request("GET", f"{self.api_base}/{media_id}")
        if not _is_success(response):
            error = _error_message(response)
            logger.error(
                f"Failed to get media URL: {error}",
                extra={"context": {"media_id": media_id, "status": response.status_code}},
            )
            return Result.failure(error, _error_code_for_status(response.status_code))

        data = _json_body(response) or {}
        if not data.get("url"):
            logger.error("No URL in media response", extra={"context": {"media_id": media_id}})
            return Result.failure("No URL in media response", "media_missing")
        return Result.success(data)

    def download_media(self, url: str) -> Result[bytes]:
        if not self.is_configured():
            return Result.failure(NOT_CONFIGURED, "not_configured")

        response = self._request("GET", url, timeout=MEDIA_DOWNLOAD_TIMEOUT)
        if not _is_success(response):
            logger.error("Failed to download media", extra={"context": {"status": response.status_code}})
            return Result.failure(f"Media download failed: {response.status_code}", "media_download_failed")
        return Result.success(response.content)

    def get_templates(self) -> Result[list]:
        """Approved message templates of the business account."""
        if not self.is_configured():
            return Result.failure(NOT_CONFIGURED, "not_configured")
        if not self.business_account_id:
            return Result.failure(
                "WhatsApp Business Account ID not configured. Please add it in Settings.",
                "not_configured",
            )

        response = self._request(
            "GET",
            f"{self.api_base}/{self.business_account_id}/message_templates",
            params={"limit": TEMPLATE_PAGE_LIMIT},
        )
        if not _is_success(response):
            error = _error_message(response)
            logger.error(f"Failed to fetch templates: {error}", extra={"context": {"status": response.status_code}})
            return Result.failure(error, _error_code_for_status(response.status_code))

        data = _json_body(response)
        if data is None:
            return Result.failure(UNEXPECTED_RESPONSE, "provider_error")
        templates = data.get("data") or []
        return Result.success([t for t in templates if t.get("status") == "APPROVED"])


def build_whatsapp_client(store: SettingsStore) -> WhatsAppClient:
    """Client configured from the settings store, falling back to the environment."""
    return WhatsAppClient(
        access_token=store.get("whatsapp_access_token", ""),
        phone_number_id=store.get("whatsapp_phone_number_id", ""),
        business_account_id=store.get("whatsapp_business_account_id", ""),
        api_version=store.get("whatsapp_api_version", settings.whatsapp_api_version),
        graph_url=settings.whatsapp_graph_url,
    )


def get_whatsapp_client() -> WhatsAppClient:
    return build_whatsapp_client(get_settings_store())
