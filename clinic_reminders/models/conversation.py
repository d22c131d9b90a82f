from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime, timezone


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationRecord(BaseModel):
    """Links a patient's phone number to the appointment they were reminded about"""
    normalized_phone: str = ""  # filled in by the store
    event_id: str
    patient_name: str
    appointment_time: str  # ISO format
    original_phone: str
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator('created_at')
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_dict(self):
        return {
            "normalized_phone": self.normalized_phone,
            "event_id": self.event_id,
            "patient_name": self.patient_name,
            "appointment_time": self.appointment_time,
            "original_phone": self.original_phone,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row) -> "ConversationRecord":
        return cls(
            normalized_phone=row["normalized_phone"],
            event_id=row["event_id"],
            patient_name=row["patient_name"],
            appointment_time=row["appointment_time"],
            original_phone=row["original_phone"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class ActionLink(BaseModel):
    """One-time token letting a patient act on an appointment without replying"""
    token: str
    event_id: str
    patient_name: str
    appointment_time: str
    created_at: datetime = Field(default_factory=_utc_now)
    used: bool = False
    action: Optional[str] = None
    action_at: Optional[datetime] = None

    def to_dict(self):
        return {
            "token": self.token,
            "event_id": self.event_id,
            "patient_name": self.patient_name,
            "appointment_time": self.appointment_time,
            "created_at": self.created_at.isoformat(),
            "used": self.used,
            "action": self.action,
            "action_at": self.action_at.isoformat() if self.action_at else None,
        }
