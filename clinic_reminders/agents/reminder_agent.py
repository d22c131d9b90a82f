import asyncio
import logging
from datetime import datetime
from typing import Optional

from ..database.conversation_db import ConversationStore
from ..database.link_db import ActionLinkStore
from ..models.conversation import ConversationRecord
from ..models.event import AppointmentEvent
from ..models.reminder import ReminderResult, RunResult
from ..services.calendar_service import CalendarService, CalendarError, CalendarNotAuthenticatedError
from ..services.notification_service import Notifier, render_template
from ..utils.config import config
from ..utils.date_utils import format_appointment_time, lookahead_window
from ..utils.phone import to_e164, mask_phone
from ..utils.title_codec import StatusMarker, apply_marker, decode, read_marker

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Sends one reminder per upcoming appointment.

    The reminded marker in the event title is the durable record that a
    reminder went out, so a title that carries any marker is never sent again.
    """

    def __init__(self, calendar: CalendarService, notifier: Notifier, store: ConversationStore,
                 link_store: Optional[ActionLinkStore] = None,
                 lookahead_hours: Optional[int] = None, max_results: Optional[int] = None,
                 default_prefix: Optional[str] = None, template_name: Optional[str] = None,
                 tz_name: Optional[str] = None, action_link_base_url: Optional[str] = None):
        self.calendar = calendar
        self.notifier = notifier
        self.store = store
        self.link_store = link_store
        self.lookahead_hours = config.LOOKAHEAD_HOURS if lookahead_hours is None else lookahead_hours
        self.max_results = max_results or config.MAX_RESULTS
        self.default_prefix = config.DEFAULT_COUNTRY_PREFIX if default_prefix is None else default_prefix
        self.template_name = template_name or config.TEMPLATE_NAME
        self.tz_name = tz_name or config.CLINIC_TIMEZONE
        base_url = config.ACTION_LINK_BASE_URL if action_link_base_url is None else action_link_base_url
        self.action_link_base_url = (base_url or "").rstrip("/")
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    async def run_once(self, now: Optional[datetime] = None) -> RunResult:
        """One scheduler tick. Never raises."""
        if self._run_lock.locked():
            logger.info("Reminder run already in progress, skipping")
            return RunResult(aborted_reason="run already in progress")

        async with self._run_lock:
            try:
                result = await self._run(now)
            except Exception as e:
                logger.exception(f"Reminder run failed: {e}")
                return RunResult(aborted_reason=f"unexpected error: {e}")

        if result.aborted_reason is None:
            logger.info(
                f"Reminder run done: {result.sent_count} sent, {result.failed_count} failed, "
                f"{result.skipped_count} skipped ({result.eligible_events}/{result.total_events} eligible)"
            )
        return result

    async def _run(self, now: Optional[datetime]) -> RunResult:
        if not self.calendar.is_authenticated():
            logger.warning("Calendar not authenticated, skipping reminder run")
            return RunResult(aborted_reason="calendar not authenticated")
        if not self.notifier.is_configured():
            logger.warning(f"Notifier '{self.notifier.name}' not configured, skipping reminder run")
            return RunResult(aborted_reason="notifier not configured")

        time_min, time_max = lookahead_window(now, self.lookahead_hours)
        try:
            events = await self.calendar.list_events(time_min, time_max, self.max_results)
        except CalendarNotAuthenticatedError as e:
            logger.warning(f"Calendar not authenticated: {e}")
            return RunResult(aborted_reason="calendar not authenticated")
        except CalendarError as e:
            logger.error(f"Error listing calendar events: {e}")
            return RunResult(aborted_reason=f"calendar error: {e}")

        eligible = []
        result = RunResult(total_events=len(events))
        for event in events:
            if not event.has_phone_delimiter:
                continue
            marker = read_marker(event.title)
            if marker == StatusMarker.NONE:
                eligible.append(event)
            elif marker == StatusMarker.UNRECOGNIZED:
                # never reminded, but operators should see why
                logger.warning(f"Event {event.id} has an unrecognized status marker: {event.title!r}")
                result.results.append(ReminderResult(event_id=event.id, title=event.title, status="skipped",
                                                     reason="unrecognized status marker"))
        result.eligible_events = len(eligible)
        logger.info(f"Found {len(events)} events, {len(eligible)} need reminders")

        for event in eligible:
            result.results.append(await self._process_event(event))
        return result

    async def _process_event(self, event: AppointmentEvent) -> ReminderResult:
        decoded = decode(event.title, self.default_prefix)
        if decoded is None:
            return ReminderResult(event_id=event.id, title=event.title, status="skipped",
                                  reason="no phone number in title")

        phone = to_e164(decoded.phone)
        if not phone:
            return ReminderResult(event_id=event.id, title=event.title, status="skipped",
                                  patient_name=decoded.name, reason="unusable phone number")

        formatted_time = format_appointment_time(event.start_time, self.tz_name)

        if not self.notifier.patient_facing:
            return await self._send_staff_summary(event, decoded.name, phone, formatted_time)

        try:
            sent = await self._send_reminder(event, decoded.name, phone, formatted_time)
        except Exception as e:
            logger.error(f"Failed to send reminder for event {event.id} to {mask_phone(phone)}: {e}")
            return ReminderResult(event_id=event.id, title=event.title, status="failed",
                                  patient_name=decoded.name, phone=phone, error=str(e))

        record = ConversationRecord(
            event_id=event.id,
            patient_name=decoded.name,
            appointment_time=event.start_time,
            original_phone=decoded.raw_phone,
        )
        try:
            await self.store.put(phone, record)
        except Exception as e:
            # the reminder is out; marking still prevents a second one
            logger.error(f"Failed to store conversation for event {event.id}: {e}")

        await self._mark_reminded(event)

        return ReminderResult(event_id=event.id, title=event.title, status="sent",
                              patient_name=decoded.name, phone=phone, message_id=sent.get("id"))

    async def _send_reminder(self, event: AppointmentEvent, patient_name: str,
                             phone: str, formatted_time: str) -> dict:
        params = [patient_name, formatted_time]
        if self.link_store is None or not self.action_link_base_url or self.notifier.provider_templates:
            return await self.notifier.send_templated(phone, self.template_name, params)

        link = await self.link_store.create_link(event.id, patient_name, event.start_time)
        body = (
            f"{render_template(self.template_name, params)}\n\n"
            f"Or manage your appointment here: {self.action_link_base_url}/appointment/{link.token}"
        )
        return await self.notifier.send_text(phone, body)

    async def _send_staff_summary(self, event: AppointmentEvent, patient_name: str,
                                  phone: str, formatted_time: str) -> ReminderResult:
        try:
            sent = await self.notifier.send_doctor_summary_email(patient_name, phone, event, formatted_time)
        except Exception as e:
            logger.error(f"Failed to send doctor summary for event {event.id}: {e}")
            return ReminderResult(event_id=event.id, title=event.title, status="failed",
                                  patient_name=patient_name, phone=phone, error=str(e))

        await self._mark_reminded(event)
        return ReminderResult(event_id=event.id, title=event.title, status="sent",
                              patient_name=patient_name, phone=phone, message_id=sent.get("id"))

    async def _mark_reminded(self, event: AppointmentEvent) -> None:
        new_title = apply_marker(event.title, StatusMarker.REMINDED)
        try:
            await self.calendar.patch_event(event.id, title=new_title)
        except Exception as e:
            logger.error(f"Failed to mark event {event.id} as reminded (title {new_title!r}): {e}")
