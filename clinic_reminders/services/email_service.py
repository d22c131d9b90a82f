"""
Email backend. Staff-facing only: the doctor gets a summary of each upcoming
appointment, patients are never emailed and cannot reply on this channel.
"""
import asyncio
import html
import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Dict, Optional

from .notification_service import Notifier, NotificationError
from ..models.event import AppointmentEvent
from ..utils.config import config
from ..utils.log_utils import notification_logger

logger = logging.getLogger(__name__)


class EmailNotifier(Notifier):
    name = "email"
    patient_facing = False

    def __init__(self, host: str = None, port: int = None, user: str = None,
                 password: str = None, from_email: str = None, doctor_email: str = None):
        self.host = host or config.EMAIL_HOST
        self.port = port or config.EMAIL_PORT
        self.user = user or config.EMAIL_USER
        self.password = password or config.EMAIL_PASSWORD
        self.from_email = from_email or config.FROM_EMAIL or self.user
        self.doctor_email = doctor_email or config.DOCTOR_EMAIL

    def is_configured(self) -> bool:
        return bool(self.user and self.password)

    def _send_email(self, to_email: str, subject: str, body: str,
                    html_body: Optional[str] = None) -> Dict:
        msg = MIMEMultipart('alternative')
        msg['From'] = self.from_email
        msg['To'] = to_email
        msg['Subject'] = subject
        msg['Message-ID'] = make_msgid()
        msg.attach(MIMEText(body, 'plain'))
        if html_body:
            msg.attach(MIMEText(html_body, 'html'))

        try:
            server = smtplib.SMTP(self.host, self.port, timeout=30)
            try:
                server.starttls()
                server.login(self.user, self.password)
                server.send_message(msg)
            finally:
                server.quit()
        except smtplib.SMTPException as e:
            raise NotificationError(f"SMTP error: {e}") from e
        return {"id": msg.get('Message-ID')}

    def _send_text(self, to: str, body: str) -> Dict:
        return self._send_email(to, f"{config.CLINIC_NAME} notification", body)

    async def send_doctor_summary_email(self, patient_name: str, phone: str,
                                        event: AppointmentEvent,
                                        formatted_time: str) -> Dict:
        """Tell the doctor about an upcoming appointment"""
        self._require_configured()
        if not self.doctor_email:
            raise NotificationError("DOCTOR_EMAIL not configured")

        subject = f"Appointment Reminder - {patient_name}"
        body = (
            f"Appointment Reminder\n\n"
            f"Patient: {patient_name}\n"
            f"Phone: {phone}\n"
            f"Appointment: {event.title or 'No title'}\n"
            f"Start: {formatted_time}\n"
            f"End: {event.end_time or '-'}\n\n"
            f"This is an automated notification from {config.CLINIC_NAME}."
        )
        html_body = (
            f"<h2>Appointment Reminder</h2>"
            f"<p><strong>Patient:</strong> {html.escape(patient_name)}</p>"
            f"<p><strong>Phone:</strong> {html.escape(phone)}</p>"
            f"<p><strong>Start:</strong> {html.escape(formatted_time)}</p>"
        )
        try:
            result = await asyncio.to_thread(self._send_email, self.doctor_email, subject, body, html_body)
        except NotificationError as e:
            notification_logger.error(f"[email] summary for event {event.id} failed: {e}")
            raise
        except Exception as e:
            notification_logger.error(f"[email] summary for event {event.id} failed: {e}")
            raise NotificationError(str(e)) from e
        notification_logger.info(f"📧 Doctor summary sent for event {event.id}: {subject}")
        return result
