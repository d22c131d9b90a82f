"""
WhatsApp Business Cloud API backend.

Reminders are business-initiated, so they must use a pre-approved template;
free text is only allowed inside the 24h window after the patient writes.
"""
import requests
import logging
from typing import Dict, List

from .notification_service import Notifier, NotificationError
from ..utils.config import config

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


class WhatsAppNotifier(Notifier):
    name = "whatsapp"
    provider_templates = True

    def __init__(self, phone_number_id: str = None, access_token: str = None,
                 api_version: str = None, language: str = None, timeout: int = 15):
        self.phone_number_id = phone_number_id or config.WHATSAPP_PHONE_NUMBER_ID
        self.access_token = access_token or config.WHATSAPP_ACCESS_TOKEN
        self.api_version = api_version or config.WHATSAPP_API_VERSION
        self.language = language or config.TEMPLATE_LANGUAGE
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_API_BASE}/{self.api_version}/{self.phone_number_id}/messages"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json"
        }

    def _post(self, payload: Dict) -> Dict:
        response = requests.post(self.messages_url, json=payload,
                                 headers=self._get_headers(), timeout=self.timeout)
        if not response.ok:
            try:
                detail = response.json().get("error", {}).get("message") or response.text
            except ValueError:
                detail = response.text
            raise NotificationError(f"WhatsApp API {response.status_code}: {detail}")
        return response.json()

    @staticmethod
    def _message_id(data: Dict) -> Dict:
        messages = data.get("messages") or [{}]
        return {"id": messages[0].get("id"), "raw": data}

    def _send_templated(self, to: str, template_id: str, params: List[str]) -> Dict:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "template",
            "template": {
                "name": template_id,
                "language": {"code": self.language},
                "components": [{
                    "type": "body",
                    "parameters": [{"type": "text", "text": str(p)} for p in params]
                }]
            }
        }
        return self._message_id(self._post(payload))

    def _send_text(self, to: str, body: str) -> Dict:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": body}
        }
        return self._message_id(self._post(payload))

    def _mark_read(self, message_id: str) -> None:
        self._post({
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id
        })
