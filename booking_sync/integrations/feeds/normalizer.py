"""
Feed entry normalization.

Converts RawFeedEntry records into canonical NormalizedEvent records:
- stable external identifier (feed UID, or a content hash when missing)
- calendar-day date range in the property timezone
- EventStatus from free-text STATUS values
- EventType inferred from the summary through an ordered rule table

The rule table is the only place that knows about platform wording. Add a
CategoryRule to support a new platform instead of changing the loop.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from booking_sync.integrations.base import RawFeedEntry
from booking_sync.models.enums import EventStatus, EventType, Platform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryRule:
    """
    Maps summary keywords to an event type.

    A rule with no platforms is generic and applies to every feed.
    """

    keywords: tuple[str, ...]
    event_type: EventType
    platforms: frozenset[Platform] = field(default_factory=frozenset)
    case_sensitive: bool = False

    @property
    def is_generic(self) -> bool:
        return not self.platforms

    def applies_to(self, platform: Platform) -> bool:
        return self.is_generic or platform in self.platforms

    def matches(self, text: str) -> bool:
        if self.case_sensitive:
            return any(keyword in text for keyword in self.keywords)
        lowered = text.lower()
        return any(keyword.lower() in lowered for keyword in self.keywords)


def _platform_rule(platform: Platform, event_type: EventType, *keywords: str) -> CategoryRule:
    return CategoryRule(
        keywords=tuple(keywords),
        event_type=event_type,
        platforms=frozenset({platform}),
    )


DEFAULT_RULES: tuple[CategoryRule, ...] = (
    # Platform wording
    _platform_rule(Platform.AIRBNB, EventType.BOOKING, "CONFIRMED", "Reserved"),
    _platform_rule(Platform.AIRBNB, EventType.BLOCKED, "UNAVAILABLE", "Not available"),
    _platform_rule(Platform.BOOKING, EventType.BLOCKED, "CLOSED", "Not available"),
    _platform_rule(Platform.BOOKING, EventType.BOOKING, "Booking.com"),
    _platform_rule(Platform.VRBO, EventType.BOOKING, "Reserved"),
    _platform_rule(Platform.VRBO, EventType.BLOCKED, "Blocked"),
    # Generic wording
    CategoryRule(("book", "reservation", "reserved"), EventType.BOOKING),
    CategoryRule(("block", "unavailable", "closed"), EventType.BLOCKED),
    CategoryRule(("maintenance", "cleaning", "repair"), EventType.MAINTENANCE),
)


def canonical_status(raw: Optional[str]) -> EventStatus:
    """
    Map a free-text STATUS value onto EventStatus.

    Args:
        raw: Value from the feed, any case

    Returns:
        EventStatus (CONFIRMED when missing or unrecognized)
    """
    if not raw:
        return EventStatus.CONFIRMED
    lowered = raw.strip().lower()
    if "confirm" in lowered:
        return EventStatus.CONFIRMED
    if "cancel" in lowered:
        return EventStatus.CANCELLED
    if "tentative" in lowered:
        return EventStatus.TENTATIVE
    return EventStatus.CONFIRMED


@dataclass
class NormalizedEvent:
    """Canonical event record produced from one feed entry; not persisted."""

    external_uid: str
    summary: str
    start_date: date
    end_date: date
    status: EventStatus
    event_type: EventType
    description: Optional[str] = None

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date < end and start < self.end_date


class EventNormalizer:
    """
    Converts raw feed entries into NormalizedEvent records.

    Rules are evaluated in order: every rule that applies to the feed's
    platform first, then generic rules. The first match wins; BOOKING is the
    default when nothing matches.
    """

    def __init__(
        self,
        rules: Optional[Sequence[CategoryRule]] = None,
        timezone: str = "UTC",
    ):
        self._rules: list[CategoryRule] = list(rules if rules is not None else DEFAULT_RULES)
        self._zone = ZoneInfo(timezone)

    @property
    def rules(self) -> tuple[CategoryRule, ...]:
        return tuple(self._rules)

    def add_rule(self, rule: CategoryRule, first: bool = True) -> None:
        """
        Register an extra category rule.

        Args:
            rule: Rule to add
            first: Evaluate before existing rules of the same kind
        """
        if first:
            self._rules.insert(0, rule)
        else:
            self._rules.append(rule)

    def categorize(self, summary: str, platform: Platform) -> EventType:
        """Infer the event type of a summary published by ``platform``."""
        text = summary or ""
        platform_rules = [r for r in self._rules if not r.is_generic and r.applies_to(platform)]
        generic_rules = [r for r in self._rules if r.is_generic]

        for rule in platform_rules + generic_rules:
            if rule.matches(text):
                return rule.event_type
        return EventType.BOOKING

    def to_date(self, value: date | datetime) -> date:
        """
        Convert a feed date or datetime to a calendar day.

        Aware datetimes are shifted into the configured timezone; floating
        datetimes are taken as already local.
        """
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(self._zone)
            return value.date()
        return value

    def normalize_entry(self, entry: RawFeedEntry, platform: Platform) -> NormalizedEvent:
        """
        Normalize one feed entry.

        Args:
            entry: Raw entry from the parser
            platform: Platform that published the feed

        Returns:
            NormalizedEvent with start_date < end_date
        """
        end_value = entry.end
        if end_value is None and entry.duration is not None:
            end_value = entry.start + entry.duration

        start_date = self.to_date(entry.start)
        end_date = self.to_date(end_value) if end_value is not None else None
        if end_date is None or end_date <= start_date:
            end_date = start_date + timedelta(days=1)

        summary = (entry.summary or "").strip()
        return NormalizedEvent(
            external_uid=entry.uid or self._fallback_uid(entry, start_date, end_date),
            summary=summary,
            start_date=start_date,
            end_date=end_date,
            status=canonical_status(entry.status),
            event_type=self.categorize(summary, platform),
            description=entry.description,
        )

    def normalize(
        self,
        entries: Iterable[RawFeedEntry],
        platform: Platform,
        not_ending_before: Optional[date] = None,
    ) -> list[NormalizedEvent]:
        """
        Normalize a feed, keeping document order.

        Entries repeating an already-seen UID are dropped.

        Args:
            entries: Raw entries
            platform: Platform that published the feed
            not_ending_before: Drop entries whose end date is before this day

        Returns:
            Normalized events
        """
        normalized: list[NormalizedEvent] = []
        seen: set[str] = set()
        duplicates = 0
        past = 0

        for entry in entries:
            event = self.normalize_entry(entry, platform)
            if event.external_uid in seen:
                duplicates += 1
                continue
            seen.add(event.external_uid)
            if not_ending_before is not None and event.end_date < not_ending_before:
                past += 1
                continue
            normalized.append(event)

        if duplicates:
            logger.warning(f"Dropped {duplicates} duplicate UIDs from {platform.value} feed")
        if past:
            logger.debug(f"Skipped {past} past entries from {platform.value} feed")
        return normalized

    @staticmethod
    def _fallback_uid(entry: RawFeedEntry, start: date, end: date) -> str:
        digest = hashlib.sha1(
            f"{start.isoformat()}|{end.isoformat()}|{entry.summary or ''}".encode("utf-8")
        ).hexdigest()
        return f"generated-{digest}"
