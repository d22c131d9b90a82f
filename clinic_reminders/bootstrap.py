"""Wires the collaborators together from configuration"""
import logging
from typing import Optional, Tuple

from .agents.intent_agent import IntentClassifier
from .agents.janitor import Janitor
from .agents.reminder_agent import ReminderScheduler
from .agents.reply_agent import ReplyHandler
from .database.conversation_db import ConversationStore, create_conversation_store
from .database.link_db import ActionLinkStore
from .services.calendar_service import CalendarService, GoogleCalendarService
from .services.notification_service import Notifier, create_notifier
from .services.webhook_service import WebhookService
from .utils.config import Config, config as default_config
from .utils.phone import to_e164

logger = logging.getLogger(__name__)


class Services:
    """Everything the HTTP app and the operator console need"""

    def __init__(self, calendar: CalendarService, notifier: Notifier, store: ConversationStore,
                 link_store: ActionLinkStore, scheduler: ReminderScheduler, reply_handler: ReplyHandler,
                 webhook: WebhookService, janitor: Janitor):
        self.calendar = calendar
        self.notifier = notifier
        self.store = store
        self.link_store = link_store
        self.scheduler = scheduler
        self.reply_handler = reply_handler
        self.webhook = webhook
        self.janitor = janitor


def resolve_staff_channel(notifier: Notifier, cfg: Config) -> Tuple[Optional[Notifier], Optional[str]]:
    """Staff get reschedule alerts on the patient channel when STAFF_PHONE is set,
    otherwise by email to STAFF_EMAIL."""
    if cfg.STAFF_PHONE and notifier.patient_facing:
        return notifier, to_e164(cfg.STAFF_PHONE, cfg.DEFAULT_COUNTRY_PREFIX.lstrip("+"))

    if cfg.STAFF_EMAIL:
        if notifier.name == "email":
            return notifier, cfg.STAFF_EMAIL
        from .services.email_service import EmailNotifier
        email = EmailNotifier()
        if email.is_configured():
            return email, cfg.STAFF_EMAIL
        logger.warning("STAFF_EMAIL set but email is not configured")

    return None, None


def build_services(cfg: Config = None, calendar: Optional[CalendarService] = None,
                   notifier: Optional[Notifier] = None, store: Optional[ConversationStore] = None,
                   link_store: Optional[ActionLinkStore] = None,
                   staff_notifier: Optional[Notifier] = None, staff_contact: Optional[str] = None) -> Services:
    cfg = cfg or default_config
    country_code = cfg.DEFAULT_COUNTRY_PREFIX.lstrip("+")

    calendar = calendar or GoogleCalendarService(cfg.GOOGLE_TOKEN_PATH, cfg.GOOGLE_CALENDAR_ID)
    notifier = notifier or create_notifier(cfg.NOTIFIER_BACKEND)
    store = store or create_conversation_store(cfg.CONVERSATION_STORE, cfg.DB_PATH, country_code)
    link_store = link_store or ActionLinkStore(cfg.LINKS_PATH)
    if staff_notifier is None:
        staff_notifier, staff_contact = resolve_staff_channel(notifier, cfg)

    scheduler = ReminderScheduler(
        calendar, notifier, store, link_store,
        lookahead_hours=cfg.LOOKAHEAD_HOURS,
        max_results=cfg.MAX_RESULTS,
        default_prefix=cfg.DEFAULT_COUNTRY_PREFIX,
        template_name=cfg.TEMPLATE_NAME,
        tz_name=cfg.CLINIC_TIMEZONE,
        action_link_base_url=cfg.ACTION_LINK_BASE_URL,
    )
    reply_handler = ReplyHandler(
        calendar, notifier, store, link_store,
        staff_notifier=staff_notifier,
        staff_contact=staff_contact,
        clinic_phone=cfg.CLINIC_PHONE,
        tz_name=cfg.CLINIC_TIMEZONE,
    )
    webhook = WebhookService(store, reply_handler, notifier, IntentClassifier(),
                             verify_token=cfg.WHATSAPP_VERIFY_TOKEN)
    janitor = Janitor(store, link_store, cfg.RETENTION_DAYS)

    logger.info(f"Services ready: notifier={notifier.name}, store={type(store).__name__}")
    return Services(calendar, notifier, store, link_store, scheduler, reply_handler, webhook, janitor)
