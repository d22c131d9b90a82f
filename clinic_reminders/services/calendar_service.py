"""
Calendar Service: list events in a time range, fetch one event, patch an event.

Authentication (the OAuth consent flow) happens outside this service; it only
reads an authorized-user token file and refreshes it when Google says so.
"""
import asyncio
import os
import logging
from datetime import datetime
from typing import List, Optional

from ..models.event import AppointmentEvent
from ..utils.config import config

logger = logging.getLogger(__name__)

_SCOPES = ["https://www.googleapis.com/auth/calendar.events"]


class CalendarError(Exception):
    """A calendar call failed"""


class CalendarNotAuthenticatedError(CalendarError):
    """No usable credentials; an operator has to complete setup"""


class CalendarService:
    """Contract the reminder flow relies on"""

    def is_authenticated(self) -> bool:
        raise NotImplementedError

    async def list_events(self, time_min: datetime, time_max: datetime,
                          max_results: int = 50) -> List[AppointmentEvent]:
        raise NotImplementedError

    async def get_event(self, event_id: str) -> AppointmentEvent:
        raise NotImplementedError

    async def patch_event(self, event_id: str, title: Optional[str] = None,
                          start: Optional[str] = None, end: Optional[str] = None) -> AppointmentEvent:
        raise NotImplementedError


class GoogleCalendarService(CalendarService):
    def __init__(self, token_path: str = None, calendar_id: str = None):
        self.token_path = token_path or config.GOOGLE_TOKEN_PATH
        self.calendar_id = calendar_id or config.GOOGLE_CALENDAR_ID
        self._service = None

    def is_authenticated(self) -> bool:
        return bool(self.token_path) and os.path.exists(self.token_path)

    def _get_service(self):
        if self._service is not None:
            return self._service
        if not self.is_authenticated():
            raise CalendarNotAuthenticatedError("Google not authenticated")

        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build

        creds = Credentials.from_authorized_user_file(self.token_path, scopes=_SCOPES)
        if not creds.valid:
            if creds.expired and creds.refresh_token:
                creds.refresh(Request())
                with open(self.token_path, "w", encoding="utf-8") as f:
                    f.write(creds.to_json())
                logger.info("Refreshed Google OAuth token")
            else:
                raise CalendarNotAuthenticatedError("Google token is invalid and cannot be refreshed")

        self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service

    def _list_sync(self, time_min, time_max, max_results):
        resp = self._get_service().events().list(
            calendarId=self.calendar_id,
            timeMin=time_min.isoformat(),
            timeMax=time_max.isoformat(),
            maxResults=max_results,
            singleEvents=True,
            orderBy="startTime",
        ).execute()
        return resp.get("items", [])

    def _get_sync(self, event_id):
        return self._get_service().events().get(
            calendarId=self.calendar_id, eventId=event_id
        ).execute()

    def _patch_sync(self, event_id, body):
        return self._get_service().events().patch(
            calendarId=self.calendar_id, eventId=event_id, body=body
        ).execute()

    async def _call(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except CalendarError:
            raise
        except Exception as e:
            raise CalendarError(str(e)) from e

    async def list_events(self, time_min, time_max, max_results=50):
        items = await self._call(self._list_sync, time_min, time_max, max_results)
        events = []
        for item in items:
            try:
                events.append(AppointmentEvent.from_google(item))
            except (KeyError, ValueError) as e:
                logger.warning(f"Ignoring unreadable calendar event {item.get('id')}: {e}")
        return events

    async def get_event(self, event_id):
        return AppointmentEvent.from_google(await self._call(self._get_sync, event_id))

    async def patch_event(self, event_id, title=None, start=None, end=None):
        body = {}
        if title is not None:
            body["summary"] = title
        if start is not None:
            body["start"] = {"dateTime": start}
        if end is not None:
            body["end"] = {"dateTime": end}
        if not body:
            raise ValueError("Nothing to patch")
        logger.info(f"Patching calendar event {event_id}: {sorted(body)}")
        return AppointmentEvent.from_google(await self._call(self._patch_sync, event_id, body))
