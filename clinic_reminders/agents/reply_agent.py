"""
Reply handling: turns a classified patient reply into a calendar status
change, a reply to the patient and, for reschedules, a note to staff.

The calendar is patched before the patient hears anything, so nobody is told
"confirmed" when the write failed. On failure the conversation is kept and
a redelivered message can retry the whole transition.
"""
import asyncio
import logging
import weakref
from typing import Dict, Optional, Tuple

from .intent_agent import Intent
from ..database.conversation_db import ConversationStore
from ..database.link_db import ActionLinkStore, ActionLinkError
from ..models.conversation import ConversationRecord
from ..models.event import AppointmentEvent
from ..services.calendar_service import CalendarService
from ..services.notification_service import Notifier
from ..utils.config import config
from ..utils.date_utils import format_appointment_time, parse_event_time
from ..utils.phone import mask_phone
from ..utils.title_codec import StatusMarker, apply_marker, read_marker

logger = logging.getLogger(__name__)

CONFIRM_TEXT = "✅ Your appointment is confirmed!\n\nSee you on {appointment_time}.\n\nThank you!"
RESCHEDULE_TEXT = (
    "🔄 We'll help you reschedule.\n\n"
    "A member of our team will call you to arrange a new time. "
    "You can also call us at {clinic_phone}.\n\nThank you!"
)
HELP_TEXT = (
    "I didn't understand that. Please reply with:\n"
    "✅ CONFIRM to confirm your appointment\n"
    "🔄 RESCHEDULE to arrange a different time"
)
APOLOGY_TEXT = "Sorry, there was an error processing your request. Please call us directly at {clinic_phone}."

TRANSITIONS: Dict[Intent, Tuple[StatusMarker, str]] = {
    Intent.CONFIRM: (StatusMarker.CONFIRMED, CONFIRM_TEXT),
    Intent.RESCHEDULE: (StatusMarker.RESCHEDULE_REQUESTED, RESCHEDULE_TEXT),
}

# Titles carrying one of these already hold the patient's answer
ANSWERED_MARKERS = (StatusMarker.CONFIRMED, StatusMarker.RESCHEDULE_REQUESTED, StatusMarker.DECLINED)


class ReplyTransitionError(Exception):
    """The calendar update or the patient reply failed; the conversation was kept"""


class ReplyHandler:
    def __init__(self, calendar: CalendarService, notifier: Notifier, store: ConversationStore,
                 link_store: Optional[ActionLinkStore] = None,
                 staff_notifier: Optional[Notifier] = None, staff_contact: Optional[str] = None,
                 clinic_phone: Optional[str] = None, tz_name: Optional[str] = None):
        self.calendar = calendar
        self.notifier = notifier
        self.store = store
        self.link_store = link_store
        self.staff_notifier = staff_notifier
        self.staff_contact = staff_contact
        self.clinic_phone = clinic_phone or config.CLINIC_PHONE or "the clinic"
        self.tz_name = tz_name or config.CLINIC_TIMEZONE
        self._event_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def reply_text(self, intent: Intent, record: ConversationRecord) -> str:
        _, template = TRANSITIONS[intent]
        return template.format(
            appointment_time=format_appointment_time(record.appointment_time, self.tz_name),
            clinic_phone=self.clinic_phone,
        )

    async def handle(self, phone: str, record: ConversationRecord, intent: Intent) -> Optional[StatusMarker]:
        """Apply the transition for intent. Returns the marker written, or None when nothing was written."""
        if intent == Intent.UNKNOWN:
            logger.info(f"Unrecognized reply from {mask_phone(phone)}, sending help prompt")
            await self._send_best_effort(phone, HELP_TEXT)
            return None

        marker, _ = TRANSITIONS[intent]
        async with self._event_lock(record.event_id):
            # an action link may have settled this event while we waited
            current = await self.store.get(phone)
            if current is None or current.event_id != record.event_id:
                logger.info(f"Event {record.event_id} already settled, ignoring {intent.value} "
                            f"from {mask_phone(phone)}")
                return None

            try:
                await self._apply_marker(record.event_id, marker)
                await self.notifier.send_text(phone, self.reply_text(intent, record))
            except Exception as e:
                logger.error(f"Error handling {intent.value} for event {record.event_id} from {mask_phone(phone)}: {e}")
                await self._send_best_effort(phone, APOLOGY_TEXT.format(clinic_phone=self.clinic_phone))
                raise ReplyTransitionError(f"{intent.value} for event {record.event_id} failed: {e}") from e

            if intent == Intent.RESCHEDULE:
                await self._notify_staff(record, phone)

            await self.store.delete(phone)
        logger.info(f"Event {record.event_id} marked {marker.value} after reply from {mask_phone(phone)}")
        return marker

    async def handle_link_action(self, token: str, action: str) -> Dict[str, str]:
        """Same transition, driven by a one-time action link instead of a reply"""
        if self.link_store is None:
            raise ActionLinkError("Action links are not enabled")
        try:
            intent = Intent((action or "").strip().lower())
        except ValueError:
            intent = Intent.UNKNOWN
        if intent not in TRANSITIONS:
            raise ActionLinkError(f"Unsupported action: {action}")

        link = await self.link_store.get(token)
        if link is None:
            raise ActionLinkError("Invalid or expired link")

        marker, _ = TRANSITIONS[intent]
        async with self._event_lock(link.event_id):
            # claim before touching the calendar; a second submission fails here
            await self.link_store.mark_used(token, intent.value)
            try:
                event = await self.calendar.get_event(link.event_id)
                if read_marker(event.title) in ANSWERED_MARKERS:
                    raise ActionLinkError("This appointment has already been answered")
                await self._patch_title(link.event_id, apply_marker(event.title, marker))
            except Exception:
                await self.link_store.release(token)
                raise

            record = ConversationRecord(
                event_id=link.event_id,
                patient_name=link.patient_name,
                appointment_time=link.appointment_time,
                original_phone="",
            )
            # the reminder conversation for this event is settled too
            for pending in await self.store.all():
                if pending.event_id == link.event_id:
                    record = pending
                    await self.store.delete(pending.normalized_phone)

        if intent == Intent.RESCHEDULE:
            await self._notify_staff(record, record.normalized_phone or None)

        logger.info(f"Event {link.event_id} marked {marker.value} via action link")
        return {
            "action": intent.value,
            "marker": marker.value,
            "message": self.reply_text(intent, record),
        }

    async def reschedule_event(self, event_id: str, start: str, end: Optional[str] = None) -> AppointmentEvent:
        """Move an appointment to a new time, as staff do after a reschedule request.

        Only the times change; the title and its status marker are left alone.
        Without `end` the appointment keeps its current length.
        """
        new_start = parse_event_time(start, self.tz_name)
        async with self._event_lock(event_id):
            event = await self.calendar.get_event(event_id)
            if end:
                new_end = parse_event_time(end, self.tz_name)
            elif event.end_time:
                new_end = new_start + (parse_event_time(event.end_time, self.tz_name)
                                       - parse_event_time(event.start_time, self.tz_name))
            else:
                raise ValueError(f"Event {event_id} has no end time; pass one explicitly")
            if new_end <= new_start:
                raise ValueError("End time must be after start time")

            updated = await self.calendar.patch_event(event_id, start=new_start.isoformat(),
                                                      end=new_end.isoformat())
        logger.info(f"Event {event_id} rescheduled to {format_appointment_time(new_start, self.tz_name)}")
        return updated

    def _event_lock(self, event_id: str) -> asyncio.Lock:
        lock = self._event_locks.get(event_id)
        if lock is None:
            lock = asyncio.Lock()
            self._event_locks[event_id] = lock
        return lock

    async def _apply_marker(self, event_id: str, marker: StatusMarker) -> None:
        event = await self.calendar.get_event(event_id)
        await self._patch_title(event_id, apply_marker(event.title, marker))

    async def _patch_title(self, event_id: str, new_title: str) -> None:
        try:
            await self.calendar.patch_event(event_id, title=new_title)
        except Exception as e:
            logger.error(f"Failed to update event {event_id} to {new_title!r}: {e}")
            raise

    async def _send_best_effort(self, phone: str, body: str) -> None:
        try:
            await self.notifier.send_text(phone, body)
        except Exception as e:
            logger.error(f"Failed to send message to {mask_phone(phone)}: {e}")

    async def _notify_staff(self, record: ConversationRecord, phone: Optional[str]) -> None:
        if self.staff_notifier is None or not self.staff_contact:
            logger.warning(f"No staff channel configured; reschedule requested for event {record.event_id}")
            return

        body = (
            f"Reschedule request\n"
            f"Patient: {record.patient_name}\n"
            f"Phone: {phone or record.original_phone or 'unknown'}\n"
            f"Appointment: {format_appointment_time(record.appointment_time, self.tz_name)}"
        )
        try:
            await self.staff_notifier.send_text(self.staff_contact, body)
        except Exception as e:
            logger.error(f"Failed to notify staff about event {record.event_id}: {e}")
