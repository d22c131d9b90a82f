"""
Phone number normalization.

Inbound webhook sender ids ("353871234567") and the numbers we send to
("+353871234567", "+3530871234567", "0871234567") disagree on leading zeros
and country-code prefixes, so every lookup goes through normalize().
"""
import re
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# "<country code>0" collapses to "<country code>": many European numbers keep
# the trunk zero when someone writes them after the international prefix.
COUNTRY_CODE_COLLAPSES = [
    ("310", "31"),    # Netherlands
    ("320", "32"),    # Belgium
    ("330", "33"),    # France
    ("340", "34"),    # Spain
    ("390", "39"),    # Italy
    ("400", "40"),    # Romania
    ("410", "41"),    # Switzerland
    ("430", "43"),    # Austria
    ("440", "44"),    # UK
    ("450", "45"),    # Denmark
    ("460", "46"),    # Sweden
    ("470", "47"),    # Norway
    ("480", "48"),    # Poland
    ("490", "49"),    # Germany
    ("3530", "353"),  # Ireland
]


def _collapse_once(digits: str) -> str:
    for code, replacement in COUNTRY_CODE_COLLAPSES:
        if digits.startswith(code):
            return replacement + digits[len(code):]
    return digits


def _strip_leading_zeros(digits: str) -> str:
    while digits.startswith("0") and len(digits) > 1:
        digits = digits[1:]
    return digits


def normalize(raw: Optional[str], default_country_code: Optional[str] = None) -> str:
    """Canonical comparison key for a phone number (digits only, no '+').

    default_country_code (e.g. "31" or "+31") is applied to numbers written in
    national format, i.e. a single trunk zero and no international prefix.
    """
    if not raw:
        return ""

    text = str(raw).strip()
    digits = re.sub(r"\D", "", text)
    if not digits:
        return ""

    cc = re.sub(r"\D", "", default_country_code or "")
    is_national = (
        cc
        and not text.startswith("+")
        and digits.startswith("0")
        and not digits.startswith("00")
        and len(digits) > 1
    )
    if is_national:
        digits = cc + digits[1:]

    # run to a fixpoint so normalize(normalize(x)) == normalize(x)
    while True:
        collapsed = _strip_leading_zeros(_collapse_once(digits))
        if collapsed == digits:
            break
        digits = collapsed

    return digits


def to_e164(raw: Optional[str], default_country_code: Optional[str] = None) -> str:
    """'+' prefixed form of normalize(), or '' for unusable input."""
    key = normalize(raw, default_country_code)
    return f"+{key}" if key else ""


def mask_phone(phone: Optional[str]) -> str:
    """Keep the last 4 digits for log lines"""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) <= 4:
        return digits
    return "*" * (len(digits) - 4) + digits[-4:]
