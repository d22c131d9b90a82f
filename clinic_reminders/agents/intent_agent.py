"""
Intent classification for patient replies.

Deterministic keyword rules, checked in order. "no" and "cancel" mean
reschedule: the clinic never drops an appointment on a one-word reply,
staff call the patient back instead.
"""
import re
import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    CONFIRM = "confirm"
    RESCHEDULE = "reschedule"
    UNKNOWN = "unknown"


# Quick-reply button payloads arrive verbatim
EXACT_PAYLOADS: Dict[str, Intent] = {
    "confirm": Intent.CONFIRM,
    "reschedule": Intent.RESCHEDULE,
}

DEFAULT_RULES: List[Tuple[Sequence[str], Intent]] = [
    (("confirm", "confirmed", "yes", "ok", "okay", "sure", "yep", "yeah",
      "correct", "fine", "great"), Intent.CONFIRM),
    (("reschedule", "change", "move", "no", "nope", "cancel", "not coming",
      "different time", "another time", "can't make it", "cant make it"), Intent.RESCHEDULE),
]


class IntentClassifier:
    """Ordered (keywords, intent) rules; first rule with a whole-word hit wins"""

    def __init__(self, rules: Optional[Iterable[Tuple[Sequence[str], Intent]]] = None,
                 exact_payloads: Optional[Dict[str, Intent]] = None):
        self.rules = list(rules if rules is not None else DEFAULT_RULES)
        self.exact_payloads = dict(exact_payloads if exact_payloads is not None else EXACT_PAYLOADS)
        self._patterns = [(self._compile(keywords), intent) for keywords, intent in self.rules]

    @staticmethod
    def _compile(keywords: Sequence[str]):
        alternation = "|".join(re.escape(k.lower()) for k in keywords)
        return re.compile(rf"\b(?:{alternation})\b")

    def classify(self, text: Optional[str]) -> Intent:
        normalized = (text or "").strip().lower()
        if not normalized:
            return Intent.UNKNOWN

        if normalized in self.exact_payloads:
            return self.exact_payloads[normalized]

        for pattern, intent in self._patterns:
            if pattern.search(normalized):
                return intent

        logger.debug(f"No intent rule matched: {normalized[:40]!r}")
        return Intent.UNKNOWN


default_classifier = IntentClassifier()


def classify(text: Optional[str]) -> Intent:
    return default_classifier.classify(text)
