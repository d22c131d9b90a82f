"""SMS backends: Twilio and a generic JSON SMS gateway"""
import requests
import logging
from typing import Dict

from .notification_service import Notifier, NotificationError
from ..utils.config import config

logger = logging.getLogger(__name__)


class TwilioSmsNotifier(Notifier):
    name = "twilio"

    def __init__(self, sid: str = None, token: str = None, from_phone: str = None):
        self.sid = sid or config.TWILIO_SID
        self.token = token or config.TWILIO_TOKEN
        self.from_phone = from_phone or config.TWILIO_PHONE
        self._client = None

    def is_configured(self) -> bool:
        return bool(self.sid and self.token and self.from_phone)

    def _get_client(self):
        if self._client is None:
            from twilio.rest import Client
            self._client = Client(self.sid, self.token)
        return self._client

    def _send_text(self, to: str, body: str) -> Dict:
        from twilio.base.exceptions import TwilioRestException

        try:
            message = self._get_client().messages.create(
                body=body,
                from_=self.from_phone,
                to=to
            )
        except TwilioRestException as e:
            raise NotificationError(f"Twilio {e.status}: {e.msg}") from e
        return {"id": message.sid}


class HttpSmsNotifier(Notifier):
    """Any gateway accepting POST {to, from, message} with a bearer key"""
    name = "http_sms"

    def __init__(self, api_url: str = None, api_key: str = None, sender: str = None,
                 timeout: int = 15):
        self.api_url = api_url or config.SMS_API_URL
        self.api_key = api_key or config.SMS_API_KEY
        self.sender = sender or config.SMS_SENDER
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def _send_text(self, to: str, body: str) -> Dict:
        response = requests.post(
            self.api_url,
            json={"to": to, "from": self.sender, "message": body},
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json"
            },
            timeout=self.timeout
        )
        if not response.ok:
            raise NotificationError(f"SMS gateway {response.status_code}: {response.text[:200]}")
        try:
            data = response.json()
        except ValueError:
            data = {}
        return {"id": data.get("id") or data.get("message_id"), "raw": data}
