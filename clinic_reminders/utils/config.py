import os
import logging
from typing import List
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """Configuration management"""

    # Clinic
    CLINIC_NAME = os.getenv("CLINIC_NAME", "the clinic")
    CLINIC_PHONE = os.getenv("CLINIC_PHONE", "")
    CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Europe/Dublin")
    DEFAULT_COUNTRY_PREFIX = os.getenv("DEFAULT_COUNTRY_PREFIX", "+353")

    # Scheduling rules
    LOOKAHEAD_HOURS = int(os.getenv("LOOKAHEAD_HOURS", "48"))
    MAX_RESULTS = int(os.getenv("MAX_RESULTS", "50"))
    REMINDER_INTERVAL_MINUTES = int(os.getenv("REMINDER_INTERVAL_MINUTES", "15"))
    RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", "7"))

    # Storage
    CONVERSATION_STORE = os.getenv("CONVERSATION_STORE", "sqlite")  # sqlite, memory
    DB_PATH = os.getenv("DB_PATH", "data/reminders.db")
    LINKS_PATH = os.getenv("LINKS_PATH", "data/appointment_links.json")
    ACTION_LINK_BASE_URL = os.getenv("ACTION_LINK_BASE_URL", "")

    # Logging
    LOGS_PATH = os.getenv("LOGS_PATH", "logs")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Messaging
    NOTIFIER_BACKEND = os.getenv("NOTIFIER_BACKEND", "whatsapp")  # whatsapp, twilio, http_sms, email
    TEMPLATE_NAME = os.getenv("TEMPLATE_NAME", "appointment_reminder")
    TEMPLATE_LANGUAGE = os.getenv("TEMPLATE_LANGUAGE", "en")

    WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID")
    WHATSAPP_ACCESS_TOKEN = os.getenv("WHATSAPP_ACCESS_TOKEN")
    WHATSAPP_VERIFY_TOKEN = os.getenv("WHATSAPP_VERIFY_TOKEN")
    WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v21.0")

    TWILIO_SID = os.getenv("TWILIO_SID")
    TWILIO_TOKEN = os.getenv("TWILIO_TOKEN")
    TWILIO_PHONE = os.getenv("TWILIO_PHONE")

    SMS_API_URL = os.getenv("SMS_API_URL")
    SMS_API_KEY = os.getenv("SMS_API_KEY")
    SMS_SENDER = os.getenv("SMS_SENDER", "Clinic")

    # Email Configuration
    EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
    EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
    EMAIL_USER = os.getenv("EMAIL_USER")
    EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD")
    FROM_EMAIL = os.getenv("FROM_EMAIL", EMAIL_USER)
    DOCTOR_EMAIL = os.getenv("DOCTOR_EMAIL")

    # Staff channel for reschedule requests
    STAFF_PHONE = os.getenv("STAFF_PHONE")
    STAFF_EMAIL = os.getenv("STAFF_EMAIL")

    # Google Calendar
    GOOGLE_TOKEN_PATH = os.getenv("GOOGLE_TOKEN_PATH", "google_token.json")
    GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")

    PORT = int(os.getenv("PORT", "3000"))

    @classmethod
    def missing_settings(cls) -> List[str]:
        """Names of settings the selected notifier backend cannot run without"""
        required = {
            "whatsapp": ["WHATSAPP_PHONE_NUMBER_ID", "WHATSAPP_ACCESS_TOKEN", "WHATSAPP_VERIFY_TOKEN"],
            "twilio": ["TWILIO_SID", "TWILIO_TOKEN", "TWILIO_PHONE"],
            "http_sms": ["SMS_API_URL", "SMS_API_KEY"],
            "email": ["EMAIL_USER", "EMAIL_PASSWORD", "DOCTOR_EMAIL"],
        }.get(cls.NOTIFIER_BACKEND, [])

        missing = [name for name in required if not getattr(cls, name)]
        if not os.path.exists(cls.GOOGLE_TOKEN_PATH):
            missing.append("GOOGLE_TOKEN_PATH")
        return missing

    @classmethod
    def validate_config(cls) -> bool:
        """Validate required configuration"""
        if cls.NOTIFIER_BACKEND not in ("whatsapp", "twilio", "http_sms", "email"):
            logger.error(f"Unknown NOTIFIER_BACKEND: {cls.NOTIFIER_BACKEND}")
            return False

        missing = cls.missing_settings()
        if missing:
            logger.warning(f"Missing required settings: {', '.join(missing)}")
            return False

        return True


# Global config instance
config = Config()
