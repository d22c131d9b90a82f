"""
Calendar event title codec.

An appointment title carries the patient identity and the reminder status:

    "<marker> <Name> # <Phone>"

The marker is the durable record of where the appointment is in the reminder
flow, so it must survive restarts and be readable back from the calendar.
"""
import re
import unicodedata
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .config import config


class StatusMarker(str, Enum):
    NONE = "none"
    REMINDED = "reminded"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    UNRECOGNIZED = "unrecognized"


# Written by this service
MARKER_GLYPHS = {
    StatusMarker.REMINDED: "🔔",
    StatusMarker.CONFIRMED: "✅",
    StatusMarker.RESCHEDULE_REQUESTED: "❓",
}

# Everything we recognise when reading titles back, including older glyphs
_GLYPH_TO_MARKER = {
    "🔔": StatusMarker.REMINDED,
    "✅": StatusMarker.CONFIRMED,
    "❓": StatusMarker.RESCHEDULE_REQUESTED,
    "🔄": StatusMarker.RESCHEDULE_REQUESTED,
    "❌": StatusMarker.DECLINED,
}

# A marker is a leading run of emoji/symbol code points. ASCII is never part
# of one, so "(New patient) Jane#087", "[FU] Jo#087" and "#0871234567" are
# all unmarked.
_MARKER_CATEGORIES = ("So", "Sm", "Sk", "Sc", "Mn", "Me", "Cf")
_PHONE_FORMATTING_RE = re.compile(r"[\s\-().]")

_VARIATION_SELECTOR = "\ufe0f"


class DecodedTitle(BaseModel):
    name: str
    phone: str
    raw_phone: str


def glyph_for(marker: StatusMarker) -> str:
    if marker not in MARKER_GLYPHS:
        raise ValueError(f"No glyph is written for {marker.value}")
    return MARKER_GLYPHS[marker]


def _is_marker_char(ch: str) -> bool:
    return ord(ch) > 0x7F and unicodedata.category(ch) in _MARKER_CATEGORIES


def _leading_token(title: str) -> str:
    end = 0
    while end < len(title) and _is_marker_char(title[end]):
        end += 1
    return title[:end]


def read_marker(title: Optional[str]) -> StatusMarker:
    """Status encoded by the title's leading marker, if any"""
    token = _leading_token((title or "").strip())
    if not token:
        return StatusMarker.NONE
    glyph = token.replace(_VARIATION_SELECTOR, "")
    return _GLYPH_TO_MARKER.get(glyph, StatusMarker.UNRECOGNIZED)


def is_marked(title: Optional[str]) -> bool:
    return read_marker(title) != StatusMarker.NONE


def strip_marker(title: Optional[str]) -> str:
    """Remove a single leading marker token. Words are never removed."""
    stripped = (title or "").strip()
    # "✅John" style titles, where no space follows the marker, are covered too
    stripped = stripped[len(_leading_token(stripped)):].lstrip()
    stripped = stripped[len(_leading_token(stripped)):]
    return stripped.strip()


def apply_marker(title: Optional[str], marker) -> str:
    """Replace whatever marker the title has with `marker`.

    `marker` may be a StatusMarker or a raw glyph string.
    """
    glyph = glyph_for(marker) if isinstance(marker, StatusMarker) else str(marker).strip()
    return f"{glyph} {strip_marker(title)}"


def clean_phone(raw_phone: str, default_prefix: Optional[str] = None) -> str:
    """Strip formatting characters, prepend the default prefix when no '+' is present"""
    default_prefix = config.DEFAULT_COUNTRY_PREFIX if default_prefix is None else default_prefix
    phone = _PHONE_FORMATTING_RE.sub("", raw_phone or "")
    if not phone:
        return ""
    if phone.startswith("+"):
        return phone
    return f"{default_prefix}{phone}"


def decode(title: Optional[str], default_prefix: Optional[str] = None) -> Optional[DecodedTitle]:
    """Parse "Name#Phone". Returns None when the title is not a patient appointment."""
    parts = (title or "").split("#", 1)
    if len(parts) < 2:
        return None

    name = strip_marker(parts[0])
    raw_phone = parts[1].strip()
    phone = clean_phone(raw_phone, default_prefix)
    if not phone:
        return None

    return DecodedTitle(name=name, phone=phone, raw_phone=raw_phone)
