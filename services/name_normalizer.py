"""
Customer Name Normalizer
Cleans a free-text customer candidate into a display name, or rejects it.

normalize_customer_name() is the contract used by the pipeline;
explain_customer_name() returns the same decision plus the rejection reason
so callers can tally why candidates were dropped.
"""
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Optional

# Rejection reasons (counted in the ingestion summary)
REASON_NOT_TEXT = "not_text"
REASON_EMPTY = "empty"
REASON_ADDRESS = "address"
REASON_TOO_SHORT = "too_short"
REASON_NO_LETTERS = "no_letters"
REASON_PLACEHOLDER = "placeholder"

PLACEHOLDER_NAMES = frozenset({"customer", "guest", "user", "test", "admin", "default"})

LEGAL_SUFFIXES = (
    "ltd", "limited", "inc", "corp", "co", "llc", "plc", "gmbh", "srl", "bv", "sa", "ag",
)

_MAX_PASSES = 5

_NAMED_ENTITY_RE = re.compile(r"&(amp|quot|apos|lt|gt);", re.IGNORECASE)
_NAMED_ENTITIES = {"amp": "&", "quot": '"', "apos": "'", "lt": "<", "gt": ">"}
_NUMERIC_ENTITY_RE = re.compile(r"&#(?:\d+|x[0-9a-f]+);", re.IGNORECASE)

_CURLY_QUOTES = str.maketrans({
    "\u2018": "'", "\u2019": "'", "\u201a": "'", "\u201b": "'", "\u2032": "'",
    "\u201c": '"', "\u201d": '"', "\u201e": '"', "\u201f": '"', "\u2033": '"',
})

_LEGAL_SUFFIX_SEGMENT_RE = re.compile(
    r"^(?:%s)\.?$" % "|".join(LEGAL_SUFFIXES), re.IGNORECASE
)
_CARE_OF_RE = re.compile(r"^(?:c\s*/\s*o\b|care\s+of\b|attn\s*:|attention\s*:)\s*", re.IGNORECASE)
_ADDRESS_RE = re.compile(r"^\d+\s")
_LEADING_NUMBER_RE = re.compile(r"^#?\d+[.:/-]?\s+")
_TRAILING_NUMBER_RE = re.compile(r"(?:\s+#?\d+)+$")
_LETTER_RE = re.compile(r"[^\W\d_]")


@dataclass(frozen=True)
class NameNormalization:
    """Outcome of cleaning one raw candidate."""
    raw: Any
    value: Optional[str]
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.value is not None


def _decode_entities(text: str) -> str:
    text = _NAMED_ENTITY_RE.sub(lambda m: _NAMED_ENTITIES[m.group(1).lower()], text)
    return _NUMERIC_ENTITY_RE.sub("", text)


def _strip_invisible(text: str) -> str:
    # whitespace controls (tab, newline) become spaces; other control/format chars are dropped
    chars = []
    for ch in text:
        if ch.isspace():
            chars.append(" ")
        elif unicodedata.category(ch) in ("Cc", "Cf"):
            continue
        else:
            chars.append(ch)
    return " ".join("".join(chars).split())


def _first_segment(text: str) -> str:
    if "," not in text:
        return text
    segments = [s.strip() for s in text.split(",")]
    head = segments[0]
    # "Acme, Inc." keeps its suffix
    if len(segments) > 1 and _LEGAL_SUFFIX_SEGMENT_RE.match(segments[1]):
        return f"{head}, {segments[1]}"
    return head


def _strip_repeated(pattern: re.Pattern, text: str) -> str:
    while True:
        stripped = pattern.sub("", text, count=1).strip()
        if stripped == text:
            return text
        text = stripped


def explain_customer_name(raw: Any) -> NameNormalization:
    """Clean raw and report the accepted value or the reason it was rejected."""
    if not isinstance(raw, str):
        return NameNormalization(raw, None, REASON_NOT_TEXT)
    text = raw.strip()
    if not text:
        return NameNormalization(raw, None, REASON_EMPTY)

    for _ in range(_MAX_PASSES):
        before = text
        text = _decode_entities(text)
        text = text.translate(_CURLY_QUOTES)
        text = _strip_invisible(text)
        text = _first_segment(text)
        text = _strip_repeated(_CARE_OF_RE, text)

        if _ADDRESS_RE.match(text):
            return NameNormalization(raw, None, REASON_ADDRESS)

        text = _strip_repeated(_LEADING_NUMBER_RE, text)
        text = _TRAILING_NUMBER_RE.sub("", text).strip()
        if text == before:
            break

    if not text:
        return NameNormalization(raw, None, REASON_EMPTY)
    if len(text) < 2:
        return NameNormalization(raw, None, REASON_TOO_SHORT)
    if _ADDRESS_RE.match(text):
        return NameNormalization(raw, None, REASON_ADDRESS)
    if not _LETTER_RE.search(text):
        return NameNormalization(raw, None, REASON_NO_LETTERS)
    if text.lower() in PLACEHOLDER_NAMES:
        return NameNormalization(raw, None, REASON_PLACEHOLDER)

    return NameNormalization(raw, text)


def normalize_customer_name(raw: Any) -> Optional[str]:
    """Cleaned display name, or None when the candidate is rejected."""
    return explain_customer_name(raw).value
