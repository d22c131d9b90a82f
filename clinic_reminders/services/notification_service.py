"""
Outbound messaging. Every backend exposes the same Notifier shape so the
reminder and reply flows never care which provider is configured.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from ..utils.config import config
from ..utils.log_utils import notification_logger
from ..utils.phone import mask_phone

logger = logging.getLogger(__name__)

# Bodies used by backends that have no provider-side templates.
# {0}, {1}, ... are the template parameters.
TEXT_TEMPLATES = {
    "appointment_reminder": (
        "Hello {0}! This is a reminder of your appointment on {1}.\n"
        "Reply YES to confirm or CHANGE to reschedule."
    ),
}


class NotificationError(Exception):
    """A provider rejected or failed to deliver a message"""


class NotifierNotConfiguredError(NotificationError):
    """Credentials for the backend are missing"""


def render_template(template_id: str, params: List[str]) -> str:
    template = TEXT_TEMPLATES.get(template_id)
    if template is None:
        # unknown template: send the parameters so nothing is silently lost
        return " ".join(str(p) for p in params)
    return template.format(*params)


class Notifier:
    """Base class. Backends implement the blocking _send_* hooks; the async
    API runs them off the event loop and logs to the notifications audit file.
    """
    name = "notifier"
    # False for staff-facing backends (email) that never reach the patient
    patient_facing = True
    # True when send_templated renders on the provider side (no free text appended)
    provider_templates = False

    def is_configured(self) -> bool:
        raise NotImplementedError

    def _require_configured(self):
        if not self.is_configured():
            raise NotifierNotConfiguredError(f"{self.name} not configured")

    def _send_templated(self, to: str, template_id: str, params: List[str]) -> Dict:
        return self._send_text(to, render_template(template_id, params))

    def _send_text(self, to: str, body: str) -> Dict:
        raise NotImplementedError

    def _mark_read(self, message_id: str) -> None:
        return None

    async def send_templated(self, to: str, template_id: str, params: List[str]) -> Dict:
        self._require_configured()
        try:
            result = await asyncio.to_thread(self._send_templated, to, template_id, params)
        except NotificationError as e:
            notification_logger.error(f"[{self.name}] template {template_id} to {mask_phone(to)} failed: {e}")
            raise
        except Exception as e:
            notification_logger.error(f"[{self.name}] template {template_id} to {mask_phone(to)} failed: {e}")
            raise NotificationError(str(e)) from e
        notification_logger.info(f"[{self.name}] template {template_id} sent to {mask_phone(to)} id={result.get('id')}")
        return result

    async def send_text(self, to: str, body: str) -> Dict:
        self._require_configured()
        try:
            result = await asyncio.to_thread(self._send_text, to, body)
        except NotificationError as e:
            notification_logger.error(f"[{self.name}] text to {mask_phone(to)} failed: {e}")
            raise
        except Exception as e:
            notification_logger.error(f"[{self.name}] text to {mask_phone(to)} failed: {e}")
            raise NotificationError(str(e)) from e
        notification_logger.info(f"[{self.name}] text sent to {mask_phone(to)}: {body[:50]}")
        return result

    async def mark_read(self, message_id: str) -> None:
        """Best effort; failures are logged and swallowed"""
        if not self.is_configured():
            return
        try:
            await asyncio.to_thread(self._mark_read, message_id)
        except Exception as e:
            logger.warning(f"[{self.name}] failed to mark message {message_id} as read: {e}")


def create_notifier(backend: Optional[str] = None) -> Notifier:
    """Build the configured backend"""
    backend = (backend or config.NOTIFIER_BACKEND).lower()

    if backend == "whatsapp":
        from .whatsapp_service import WhatsAppNotifier
        return WhatsAppNotifier()
    if backend == "twilio":
        from .sms_service import TwilioSmsNotifier
        return TwilioSmsNotifier()
    if backend == "http_sms":
        from .sms_service import HttpSmsNotifier
        return HttpSmsNotifier()
    if backend == "email":
        from .email_service import EmailNotifier
        return EmailNotifier()

    raise ValueError(f"Unknown notifier backend: {backend}")
