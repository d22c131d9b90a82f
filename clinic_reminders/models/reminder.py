from pydantic import BaseModel, Field
from typing import Optional, List


class ReminderResult(BaseModel):
    """Outcome of one event in a scheduler run"""
    event_id: str
    title: str
    status: str  # sent, failed, skipped
    patient_name: Optional[str] = None
    phone: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    message_id: Optional[str] = None

    def to_dict(self):
        return {
            "event_id": self.event_id,
            "title": self.title,
            "status": self.status,
            "patient_name": self.patient_name or "",
            "phone": self.phone or "",
            "reason": self.reason or "",
            "error": self.error or "",
            "message_id": self.message_id or "",
        }


class RunResult(BaseModel):
    """Aggregate of one scheduler tick. Never persisted."""
    total_events: int = 0
    eligible_events: int = 0
    results: List[ReminderResult] = Field(default_factory=list)
    aborted_reason: Optional[str] = None

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.results if r.status == "sent")

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.status == "failed")

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if r.status == "skipped")

    def to_dict(self):
        return {
            "total_events": self.total_events,
            "eligible_events": self.eligible_events,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "aborted_reason": self.aborted_reason,
            "results": [r.to_dict() for r in self.results],
        }
