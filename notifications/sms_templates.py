"""
SMS templates for confirmation and reminder messages.

Every SMS leaves this module as a single GSM segment:
- accents and typographic characters are folded to plain ASCII
- the text is capped at 160 characters
"""

import re
import unicodedata
from datetime import datetime
from zoneinfo import ZoneInfo

from notifications.types import NotificationContext, SmsContext

SMS_SEGMENT_LENGTH = 160

# Characters NFD does not decompose into ASCII + combining marks
_REPLACEMENTS = {
    "œ": "oe",
    "Œ": "OE",
    "æ": "ae",
    "Æ": "AE",
    "·": " ",
    "…": "...",
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
    "–": "-",
    "—": "-",
}

_NON_PRINTABLE_ASCII = re.compile(r"[^\x20-\x7E\n\r]")
_WHITESPACE = re.compile(r"\s+")

# Accent-free French names, indexed like datetime.weekday() / month - 1
WEEKDAYS_FR = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]
MONTHS_FR = [
    "janvier", "fevrier", "mars", "avril", "mai", "juin",
    "juillet", "aout", "septembre", "octobre", "novembre", "decembre",
]


def normalize_text(value: str | None) -> str:
    """
    Fold text to printable ASCII so it stays within the GSM 7-bit charset.

    Args:
        value: Arbitrary user-facing text (names, salon labels...)

    Returns:
        Text without diacritics, ligatures or curly punctuation, with
        whitespace collapsed and trimmed. Empty input returns "".
    """
    if not value:
        return ""

    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))

    for char, replacement in _REPLACEMENTS.items():
        stripped = stripped.replace(char, replacement)

    stripped = _NON_PRINTABLE_ASCII.sub("", stripped)
    return _WHITESPACE.sub(" ", stripped).strip()


def ensure_single_segment(value: str, max_length: int = SMS_SEGMENT_LENGTH) -> str:
    """
    Normalize and truncate text to one SMS segment.

    A truncated text gets a trailing "..." unless the cut already ends
    on a period.
    """
    normalized = normalize_text(value)
    if len(normalized) <= max_length:
        return normalized

    truncated = normalized[: max_length - 3].rstrip()
    if truncated.endswith("."):
        return truncated
    return f"{truncated}..."


def build_confirmation_sms(ctx: SmsContext) -> str:
    """Confirmation SMS sent immediately or as the unopened-email fallback."""
    raw = (
        f"Bonjour {ctx.client_first_name}, votre service {ctx.service_name} "
        f"chez {ctx.salon_name} est confirme le {ctx.weekday} "
        f"{ctx.date} a {ctx.time}. "
        "Nous avons hate de vous accueillir !"
    )
    return ensure_single_segment(raw)


def build_reminder_sms(ctx: SmsContext) -> str:
    raw = (
        f"Rappel de RDV: Bonjour {ctx.client_first_name}, votre service {ctx.service_name} "
        f"chez {ctx.salon_name} est prevu le {ctx.weekday} "
        f"{ctx.date} a {ctx.time}. "
        "Si vous ne pouvez pas venir, merci de nous appeler."
    )
    return ensure_single_segment(raw)


def format_date_for_sms(dt: datetime) -> str:
    """Format as "2 decembre 2025"."""
    return f"{dt.day} {MONTHS_FR[dt.month - 1]} {dt.year}"


def format_weekday_for_sms(dt: datetime) -> str:
    return WEEKDAYS_FR[dt.weekday()]


def format_time_for_sms(dt: datetime) -> str:
    return dt.strftime("%H:%M")


def build_sms_context(context: NotificationContext, timezone: str) -> SmsContext:
    """
    Derive template values from an appointment context.

    Args:
        context: Appointment context (start_time is timezone-aware)
        timezone: IANA zone the salon displays times in

    Returns:
        SmsContext with date, weekday and time rendered in the salon zone
    """
    local_start = context.start_time.astimezone(ZoneInfo(timezone))
    return SmsContext(
        client_first_name=context.client_first_name,
        service_name=context.service_name,
        salon_name=context.salon_name,
        weekday=format_weekday_for_sms(local_start),
        date=format_date_for_sms(local_start),
        time=format_time_for_sms(local_start),
    )
