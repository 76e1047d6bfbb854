"""
iCalendar feed parsing.

Turns a downloaded feed document into RawFeedEntry records using the
icalendar library. Only VEVENT components are considered.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional

from icalendar import Calendar

from booking_sync.exceptions import EmptyFeedError, ParseError
from booking_sync.integrations.base import RawFeedEntry

logger = logging.getLogger(__name__)


def _text(value: Any) -> Optional[str]:
    """Convert an icalendar text property to a stripped str."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _date_value(prop: Any) -> Optional[date | datetime]:
    """Extract the date/datetime carried by a DTSTART/DTEND property."""
    if prop is None:
        return None
    value = getattr(prop, "dt", prop)
    if isinstance(value, (date, datetime)):
        return value
    return None


def _duration_value(prop: Any) -> Optional[timedelta]:
    if prop is None:
        return None
    value = getattr(prop, "dt", prop)
    return value if isinstance(value, timedelta) else None


def parse_feed(content: str | bytes, source: str = "feed") -> list[RawFeedEntry]:
    """
    Parse an iCalendar document into raw entries.

    Components without DTSTART are skipped with a warning; everything else
    about an entry is passed through unmodified for the normalizer.

    Args:
        content: Feed document
        source: Label used in log and error messages (typically the URL)

    Returns:
        Entries in document order

    Raises:
        ParseError: If the document is not a well-formed calendar
        EmptyFeedError: If the calendar holds no usable events
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")

    stripped = content.lstrip("\ufeff \t\r\n")
    if not stripped.upper().startswith("BEGIN:VCALENDAR"):
        raise ParseError(f"Feed from {source} is not an iCalendar document")

    try:
        calendar = Calendar.from_ical(stripped)
    except (ValueError, IndexError, KeyError) as e:
        raise ParseError(f"Malformed iCalendar feed from {source}: {e}", original_error=e)

    entries: list[RawFeedEntry] = []
    skipped = 0

    for component in calendar.walk("VEVENT"):
        start = _date_value(component.get("DTSTART"))
        if start is None:
            skipped += 1
            logger.warning(
                f"Skipping event {component.get('UID')!s} from {source}: missing DTSTART"
            )
            continue

        entries.append(
            RawFeedEntry(
                uid=_text(component.get("UID")),
                summary=_text(component.get("SUMMARY")) or "",
                start=start,
                end=_date_value(component.get("DTEND")),
                duration=_duration_value(component.get("DURATION")),
                description=_text(component.get("DESCRIPTION")),
                status=_text(component.get("STATUS")),
            )
        )

    if not entries:
        raise EmptyFeedError(f"Feed from {source} contains no events")

    logger.debug(f"Parsed {len(entries)} events from {source} ({skipped} skipped)")
    return entries
