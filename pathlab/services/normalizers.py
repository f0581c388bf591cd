"""Pure string normalisation used by the resolvers.

Nothing in here touches the database, so the matching rules can be tested on
their own.
"""

import re
from typing import Any

PATIENT_TYPES = ("OPD", "IPD")
GENERIC_CATEGORY_RE = re.compile(r"^(general|others?)$", re.IGNORECASE)

_WHITESPACE_RE = re.compile(r"\s+")
_SEPARATOR_RE = re.compile(r"[.\s]+")
LOOSE_SEPARATOR = r"\.?\s*"


def collapse_whitespace(value: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", (value or "").strip())


def compact_key(value: str | None) -> str:
    """`c.b. c` -> `CBC`: periods and whitespace removed, upper-cased."""
    return _SEPARATOR_RE.sub("", value or "").upper()


def parameter_key(value: str | None) -> str:
    return collapse_whitespace(value).upper()


def loose_punctuation_pattern(value: str | None) -> str | None:
    """Regex that matches `value` with an optional period and any spacing between characters.

    `C.B.C`, `CBC` and `C B C` all produce the same pattern. The pattern is
    unanchored and carries no flags; callers decide on case handling.
    Returns None when nothing is left after stripping separators.
    """
    stripped = _SEPARATOR_RE.sub("", value or "")
    if not stripped:
        return None
    return LOOSE_SEPARATOR.join(re.escape(ch) for ch in stripped)


def first_token(value: str | None) -> str:
    parts = collapse_whitespace(value).split(" ")
    return parts[0] if parts else ""


def normalize_receipt(value: Any) -> str | None:
    """Canonical receipt text: trimmed, and `00500` stored as `500`."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return str(int(text))
    return text


def normalize_room_number(value: Any) -> str:
    """Room numbers are stored as `RN-<n>`."""
    room = str(value or "").strip()
    if not room:
        return ""
    if room.startswith("RN-"):
        return room
    if room.startswith("RN"):
        return f"RN-{room[2:]}"
    return f"RN-{room}"


def normalize_patient_type(value: Any) -> str:
    """Upper-cased, trimmed text; non-strings become an empty string."""
    return value.strip().upper() if isinstance(value, str) else ""


def valid_patient_type(value: Any) -> str | None:
    normalized = normalize_patient_type(value)
    return normalized if normalized in PATIENT_TYPES else None


def looks_like_primary_key(value: str) -> bool:
    return value.isdigit()
