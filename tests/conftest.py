"""Shared fakes for the calendar and messaging collaborators."""
from datetime import datetime, timedelta, timezone

import pytest

from clinic_reminders.database.conversation_db import InMemoryConversationStore
from clinic_reminders.database.link_db import ActionLinkStore
from clinic_reminders.models.event import AppointmentEvent
from clinic_reminders.services.calendar_service import CalendarService, CalendarError
from clinic_reminders.services.notification_service import Notifier, NotificationError
from clinic_reminders.utils.date_utils import parse_event_time

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class FakeCalendar(CalendarService):
    def __init__(self, authenticated=True):
        self.authenticated = authenticated
        self.events = {}
        self.patches = []
        self.reschedules = []
        self.fail_patch = False
        self.fail_get = False
        self.list_calls = 0

    def add(self, event_id, title, start, end=None):
        if isinstance(start, datetime):
            end = end or start + timedelta(minutes=30)
            start, end = start.isoformat(), end.isoformat()
        self.events[event_id] = AppointmentEvent(id=event_id, title=title, start_time=start, end_time=end)
        return self.events[event_id]

    def title(self, event_id):
        return self.events[event_id].title

    def is_authenticated(self):
        return self.authenticated

    async def list_events(self, time_min, time_max, max_results=50):
        self.list_calls += 1
        found = [e for e in self.events.values()
                 if time_min <= parse_event_time(e.start_time) <= time_max]
        found.sort(key=lambda e: parse_event_time(e.start_time))
        return found[:max_results]

    async def get_event(self, event_id):
        if self.fail_get or event_id not in self.events:
            raise CalendarError(f"event {event_id} not found")
        return self.events[event_id]

    async def patch_event(self, event_id, title=None, start=None, end=None):
        if self.fail_patch:
            raise CalendarError("calendar unavailable")
        if event_id not in self.events:
            raise CalendarError(f"event {event_id} not found")
        update = {}
        if title is not None:
            self.patches.append((event_id, title))
            update["title"] = title
        if start is not None:
            update["start_time"] = start
        if end is not None:
            update["end_time"] = end
        if start is not None or end is not None:
            self.reschedules.append((event_id, start, end))
        self.events[event_id] = self.events[event_id].model_copy(update=update)
        return self.events[event_id]


class FakeNotifier(Notifier):
    name = "fake"
    provider_templates = True

    def __init__(self, configured=True, patient_facing=True, provider_templates=True):
        self.configured = configured
        self.patient_facing = patient_facing
        self.provider_templates = provider_templates
        self.templated = []
        self.texts = []
        self.read = []
        self.failing_numbers = set()
        self.fail_all = False
        self._next_id = 0

    def is_configured(self):
        return self.configured

    def _message(self, to):
        if self.fail_all or to in self.failing_numbers:
            raise NotificationError(f"delivery to {to} failed")
        self._next_id += 1
        return {"id": f"wamid.{self._next_id}"}

    def _send_templated(self, to, template_id, params):
        result = self._message(to)
        self.templated.append((to, template_id, list(params)))
        return result

    def _send_text(self, to, body):
        result = self._message(to)
        self.texts.append((to, body))
        return result

    def _mark_read(self, message_id):
        self.read.append(message_id)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def staff_notifier():
    return FakeNotifier()


@pytest.fixture
def store():
    return InMemoryConversationStore(default_country_code="+353")


@pytest.fixture
def link_store(tmp_path):
    return ActionLinkStore(str(tmp_path / "links.json"))


@pytest.fixture
def make_notifier():
    return FakeNotifier
