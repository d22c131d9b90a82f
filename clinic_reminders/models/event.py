from pydantic import BaseModel, field_validator
from typing import Optional, Dict, Any
from datetime import datetime


class AppointmentEvent(BaseModel):
    """A calendar event as the reminder flow sees it"""
    id: str
    title: str = ""
    start_time: str  # ISO datetime, or YYYY-MM-DD for all-day events
    end_time: Optional[str] = None
    description: Optional[str] = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_datetime(cls, v):
        if v is None:
            return v
        try:
            datetime.fromisoformat(v.replace('Z', '+00:00'))
            return v
        except ValueError:
            raise ValueError('DateTime must be in ISO format')

    @property
    def has_phone_delimiter(self) -> bool:
        return "#" in self.title

    @classmethod
    def from_google(cls, item: Dict[str, Any]) -> "AppointmentEvent":
        """Build from a Google Calendar API event resource"""
        start = item.get("start") or {}
        end = item.get("end") or {}
        return cls(
            id=item["id"],
            title=item.get("summary") or "",
            start_time=start.get("dateTime") or start.get("date"),
            end_time=end.get("dateTime") or end.get("date"),
            description=item.get("description"),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "start_time": self.start_time,
            "end_time": self.end_time or "",
            "description": self.description or "",
        }
