"""WhatsApp Cloud API message dispatch."""

import logging
from typing import Any, Dict, Optional
import requests
from requests.exceptions import RequestException, Timeout, ConnectionError
from services.integrations.webhook import parse_retry_after
from shared.constants import RETRYABLE_HTTP_STATUS_CODES
from shared.exceptions import CollaboratorError, TaskError
from shared.settings import get_settings
from shared.types import Contact

GRAPH_API_URL = "https://graph.facebook.com"
SEND_TIMEOUT_SECONDS = 30


class WhatsAppDispatcher:

    def __init__(
        self,
        access_token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        api_version: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.access_token = access_token or settings.whatsapp_access_token
        self.phone_number_id = phone_number_id or settings.whatsapp_phone_number_id
        self.api_version = api_version or settings.whatsapp_api_version
        self.session = session or requests.Session()

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_API_URL}/{self.api_version}/{self.phone_number_id}/messages"

    def send_text(self, contact: Contact, text: str, media_url: Optional[str] = None, media_type: Optional[str] = None) -> Dict[str, Any]:
        if media_url:
            media_kind = media_type or "image"
            media: Dict[str, Any] = {"link": media_url}
            if text and media_kind != "audio":
                media["caption"] = text
            payload = {"type": media_kind, media_kind: media}
        else:
            payload = {"type": "text", "text": {"preview_url": False, "body": text}}
        return self._send(contact, payload)

    def send_template(self, contact: Contact, template_id: str, language: str, variables: Dict[str, str]) -> Dict[str, Any]:
        template: Dict[str, Any] = {"name": template_id, "language": {"code": language}}
        if variables:
            # positional body parameters, ordered by key ("1", "2", ...)
            ordered = [variables[k] for k in sorted(variables, key=lambda k: (not k.isdigit(), int(k) if k.isdigit() else 0, k))]
            template["components"] = [{
                "type": "body",
                "parameters": [{"type": "text", "text": value} for value in ordered],
            }]
        return self._send(contact, {"type": "template", "template": template})

    def notify(self, email: str, message: str, context: Dict[str, Any]) -> None:
        logging.info("Workflow notification", extra={"notification_email": email, "notification_message": message, **context})

    def _send(self, contact: Contact, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not contact.phone:
            raise CollaboratorError(TaskError(
                error_type="MESSAGE_ERROR",
                error_message=f"Contact '{contact.id}' has no phone number",
                is_retryable=False,
            ))
        body = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": contact.phone, **payload}

        try:
            response = self.session.post(
                self.messages_url,
                headers={"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"},
                json=body,
                timeout=SEND_TIMEOUT_SECONDS,
            )
        except (Timeout, ConnectionError) as e:
            raise CollaboratorError(TaskError(
                error_type="NETWORK_ERROR",
                error_message=f"Network error: {str(e)}",
                is_retryable=True,
                context={"contact_id": contact.id},
            ))
        except RequestException as e:
            raise CollaboratorError(TaskError(
                error_type="MESSAGE_ERROR",
                error_message=f"WhatsApp request failed: {str(e)}",
                is_retryable=False,
                context={"contact_id": contact.id},
            ))

        if response.status_code >= 400:
            raise CollaboratorError(TaskError(
                error_type="MESSAGE_ERROR",
                error_message=f"WhatsApp API error: {response.status_code} - {response.text[:200]}",
                http_status_code=response.status_code,
                is_retryable=response.status_code in RETRYABLE_HTTP_STATUS_CODES,
                retry_after_seconds=parse_retry_after(response.headers.get("Retry-After")),
                context={"contact_id": contact.id},
            ))

        data = response.json()
        message_id = ((data.get("messages") or [{}])[0]).get("id")
        logging.info("WhatsApp message sent", extra={"contact_id": contact.id, "message_id": message_id, "type": payload["type"]})
        return {"message_id": message_id}
