# techroute/timeparse.py
from __future__ import annotations
import re
from typing import Optional, Tuple
from dateutil import parser as du

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")
_AMPM = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm|a|p)$", re.IGNORECASE)
_AMPM_SUFFIX = re.compile(r"\s*(am|pm|a|p)$", re.IGNORECASE)
_BARE_HOUR = re.compile(r"^(\d{1,2}):?(\d{2})?$")
# export formats carrying seconds or a date part, e.g. '14:30:00', '2:30:00 PM', '2025-03-01T09:00'
_CLOCK_TEXT = re.compile(
    r"^(?:\d{4}-\d{2}-\d{2}[ T])?\d{1,2}:\d{2}:\d{2}(?:\.\d+)?(?:\s*[ap]m)?$"
    r"|^\d{4}-\d{2}-\d{2}[ T]\d{1,2}:\d{2}$",
    re.IGNORECASE,
)

_TF_PAREN = re.compile(r"TF\(([^)]+)\)")
# "TF: 9a-1p" runs until the next known description tag or end of text
_TF_COLON = re.compile(
    r"TF\s*:\s*([^|]+?)(?:\s+(?:TF_det|WTC|IS_POT|Morning|EQ|RA|DT|IS_PC|EQP|SB|Cat:|Rooms:|COL:)|$)",
    re.IGNORECASE,
)

MINUTES_PER_DAY = 24 * 60


def convert_ampm_to_24h(value: str) -> Optional[str]:
    """'12p' -> '12:00', '6:30pm' -> '18:30', '12a' -> '00:00'. None if not AM/PM text."""
    if not isinstance(value, str):
        return None
    m = _AMPM.match(value.strip())
    if not m:
        return None
    hours = int(m.group(1))
    minutes = int(m.group(2) or 0)
    if minutes > 59 or hours < 1 or hours > 12:
        return None
    meridiem = m.group(3).lower()
    if meridiem.startswith("p") and hours != 12:
        hours += 12
    elif meridiem.startswith("a") and hours == 12:
        hours = 0
    return f"{hours:02d}:{minutes:02d}"


def normalize_time(value) -> Optional[str]:
    """
    Normalize 'H:MM', 'HH:MM' or AM/PM text to 'HH:MM'. Clock text with
    seconds or a leading date goes through dateutil.
    Returns None when the value is missing or out of range (hour > 23, minute > 59).
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    converted = convert_ampm_to_24h(s)
    if converted is not None:
        return converted
    m = _HHMM.match(s)
    if not m:
        if not _CLOCK_TEXT.match(s):
            return None
        try:
            parsed = du.parse(s)
        except (ValueError, OverflowError):
            return None
        return f"{parsed.hour:02d}:{parsed.minute:02d}"
    hh, mm = int(m.group(1)), int(m.group(2))
    if hh > 23 or mm > 59:
        return None
    return f"{hh:02d}:{mm:02d}"


def is_valid_time(value) -> bool:
    return normalize_time(value) is not None


def to_minutes(hhmm: str) -> int:
    norm = normalize_time(hhmm)
    if norm is None:
        raise ValueError(f"Invalid time '{hhmm}' (expected HH:MM)")
    hh, mm = norm.split(":")
    return int(hh) * 60 + int(mm)


def minutes_to_hhmm(minutes: float) -> str:
    total = int(round(minutes))
    # past-midnight finishes still render, e.g. 24:30
    return f"{total // 60:02d}:{total % 60:02d}"


def is_start_before_end(start, end) -> bool:
    s, e = normalize_time(start), normalize_time(end)
    if s is None or e is None:
        return False
    return to_minutes(s) < to_minutes(e)


def parse_timeframe(text) -> Tuple[Optional[str], Optional[str]]:
    """
    Parse the inside of a TF(...) marker: '09:00-13:00', '12p-6p', '12-6 PM', '8-5'.
    Without any AM/PM marker the usual working-day reading is applied:
    a 7-12 start with an end <= 6 means AM -> PM, and 1-6 starts are afternoon.
    """
    if not isinstance(text, str) or not text.strip():
        return None, None
    parts = re.split(r"\s*-\s*", text.strip())
    if len(parts) != 2:
        return None, None
    start_part, end_part = parts

    start_has = bool(_AMPM_SUFFIX.search(start_part))
    end_has = bool(_AMPM_SUFFIX.search(end_part))

    if not start_has and not end_has:
        sm, em = _BARE_HOUR.match(start_part), _BARE_HOUR.match(end_part)
        if not sm or not em:
            return None, None
        sh, smin = int(sm.group(1)), sm.group(2) or "00"
        eh, emin = int(em.group(1)), em.group(2) or "00"
        if 7 <= sh <= 12 and eh <= 6:
            start_part, end_part = f"{sh}:{smin}", f"{eh}:{emin} PM"
        elif 1 <= sh <= 6 and 1 <= eh <= 11:
            start_part, end_part = f"{sh}:{smin} PM", f"{eh}:{emin} PM"
        else:
            start_part, end_part = f"{sh}:{smin}", f"{eh}:{emin}"
    elif not start_has and end_has:
        meridiem = _AMPM_SUFFIX.search(end_part).group(1)
        sm = _BARE_HOUR.match(start_part)
        if not sm:
            return None, None
        start_part = f"{int(sm.group(1))}:{sm.group(2) or '00'} {meridiem}"

    return normalize_time(start_part), normalize_time(end_part)


def extract_timeframe(description) -> Tuple[Optional[str], Optional[str], str]:
    """
    Find a TF(...) or 'TF: ...' marker in free text.
    Returns (start, end, original_text); original_text is '' when no marker exists.
    """
    text = str(description or "")
    m = _TF_PAREN.search(text)
    if not m:
        m = _TF_COLON.search(text)
    if not m:
        return None, None, ""
    original = m.group(1).strip()
    start, end = parse_timeframe(original)
    return start, end, original
