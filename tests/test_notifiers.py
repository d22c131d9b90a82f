import asyncio
import smtplib

import pytest

from clinic_reminders.models.event import AppointmentEvent
from clinic_reminders.services import email_service, sms_service, whatsapp_service
from clinic_reminders.services.email_service import EmailNotifier
from clinic_reminders.services.notification_service import (
    NotificationError, NotifierNotConfiguredError, create_notifier, render_template,
)
from clinic_reminders.services.sms_service import HttpSmsNotifier, TwilioSmsNotifier
from clinic_reminders.services.whatsapp_service import WhatsAppNotifier


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


@pytest.fixture
def posts(monkeypatch):
    calls = []
    responses = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers})
        return responses.pop(0) if responses else FakeResponse(data={"messages": [{"id": "wamid.1"}]})

    monkeypatch.setattr(whatsapp_service.requests, "post", fake_post)
    monkeypatch.setattr(sms_service.requests, "post", fake_post)
    return calls, responses


def test_render_template():
    body = render_template("appointment_reminder", ["Ann", "Monday 19 October 2026 at 10:00"])
    assert body.startswith("Hello Ann!")
    assert "Monday 19 October 2026 at 10:00" in body
    assert render_template("other", ["a", "b"]) == "a b"


def test_whatsapp_template_payload(posts):
    calls, _ = posts
    notifier = WhatsAppNotifier("12345", "token", "v21.0", "en")

    result = asyncio.run(notifier.send_templated("+353871234567", "appointment_reminder", ["Ann", "Mon"]))

    assert result["id"] == "wamid.1"
    call = calls[0]
    assert call["url"] == "https://graph.facebook.com/v21.0/12345/messages"
    assert call["headers"]["Authorization"] == "Bearer token"
    template = call["json"]["template"]
    assert template["name"] == "appointment_reminder"
    assert template["language"] == {"code": "en"}
    assert [p["text"] for p in template["components"][0]["parameters"]] == ["Ann", "Mon"]


def test_whatsapp_text_and_mark_read(posts):
    calls, _ = posts
    notifier = WhatsAppNotifier("12345", "token", "v21.0", "en")

    asyncio.run(notifier.send_text("353871234567", "hello"))
    asyncio.run(notifier.mark_read("wamid.in"))

    assert calls[0]["json"]["text"]["body"] == "hello"
    assert calls[1]["json"] == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.in"}


def test_whatsapp_api_error_raises(posts):
    _, responses = posts
    responses.append(FakeResponse(400, {"error": {"message": "Template name does not exist"}}))
    notifier = WhatsAppNotifier("12345", "token", "v21.0", "en")

    with pytest.raises(NotificationError, match="Template name does not exist"):
        asyncio.run(notifier.send_templated("+353871234567", "missing", []))


def test_whatsapp_mark_read_errors_are_swallowed(posts):
    _, responses = posts
    responses.append(FakeResponse(500, None, "boom"))

    asyncio.run(WhatsAppNotifier("12345", "token").mark_read("wamid.in"))


def test_unconfigured_backend_raises():
    with pytest.raises(NotifierNotConfiguredError):
        asyncio.run(HttpSmsNotifier(api_url="", api_key="").send_text("+353871234567", "hi"))


def test_http_sms_renders_templates_as_text(posts):
    calls, responses = posts
    responses.append(FakeResponse(data={"id": "sms-1"}))
    notifier = HttpSmsNotifier("https://sms.example/send", "key", "Clinic")

    result = asyncio.run(notifier.send_templated("+353871234567", "appointment_reminder", ["Ann", "Mon"]))

    assert result["id"] == "sms-1"
    assert calls[0]["json"]["to"] == "+353871234567"
    assert calls[0]["json"]["from"] == "Clinic"
    assert calls[0]["json"]["message"].startswith("Hello Ann!")


def test_twilio_send(monkeypatch):
    created = {}

    class FakeMessages:
        def create(self, body, from_, to):
            created.update(body=body, from_=from_, to=to)
            return type("Msg", (), {"sid": "SM123"})()

    notifier = TwilioSmsNotifier("AC1", "tok", "+15550001111")
    notifier._client = type("Client", (), {"messages": FakeMessages()})()

    result = asyncio.run(notifier.send_text("+353871234567", "hi"))

    assert result == {"id": "SM123"}
    assert created == {"body": "hi", "from_": "+15550001111", "to": "+353871234567"}


class FakeSMTP:
    sent = []
    fail = False

    def __init__(self, host, port, timeout=None):
        self.host = host

    def starttls(self):
        pass

    def login(self, user, password):
        if FakeSMTP.fail:
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)

    def quit(self):
        pass


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail = False
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_doctor_summary_email(smtp):
    notifier = EmailNotifier("smtp.example", 587, "clinic@example.com", "pw",
                             doctor_email="doctor@example.com")
    event = AppointmentEvent(id="evt1", title="John Smith#0871234567",
                             start_time="2026-10-20T15:00:00+00:00")

    asyncio.run(notifier.send_doctor_summary_email("John Smith", "+353871234567", event,
                                                   "Tuesday 20 October 2026 at 16:00"))

    msg = smtp.sent[0]
    assert msg["To"] == "doctor@example.com"
    assert msg["Subject"] == "Appointment Reminder - John Smith"
    assert notifier.patient_facing is False


def test_doctor_summary_escapes_html_and_has_message_id(smtp):
    notifier = EmailNotifier("smtp.example", 587, "clinic@example.com", "pw",
                             doctor_email="doctor@example.com")
    event = AppointmentEvent(id="evt1", title="<b>Jo</b>#0871234567",
                             start_time="2026-10-20T15:00:00+00:00")

    result = asyncio.run(notifier.send_doctor_summary_email("<b>Jo</b> & Co", "+353871234567", event,
                                                            "Tuesday 20 October 2026 at 16:00"))

    msg = smtp.sent[0]
    html_part = msg.get_payload()[1].get_payload(decode=True).decode()
    assert "&lt;b&gt;Jo&lt;/b&gt; &amp; Co" in html_part
    assert "<b>Jo</b>" not in html_part
    assert result["id"] is not None
    assert result["id"] == msg["Message-ID"]


def test_email_smtp_failure_raises(smtp):
    smtp.fail = True
    notifier = EmailNotifier("smtp.example", 587, "clinic@example.com", "pw", doctor_email="d@example.com")

    with pytest.raises(NotificationError):
        asyncio.run(notifier.send_text("staff@example.com", "Reschedule request"))


def test_create_notifier():
    assert isinstance(create_notifier("whatsapp"), WhatsAppNotifier)
    assert isinstance(create_notifier("twilio"), TwilioSmsNotifier)
    assert isinstance(create_notifier("http_sms"), HttpSmsNotifier)
    assert isinstance(create_notifier("email"), EmailNotifier)
    with pytest.raises(ValueError):
        create_notifier("pigeon")
