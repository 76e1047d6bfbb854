"""Tests for iCalendar feed parsing."""

from datetime import date, datetime, timedelta

import pytest

from booking_sync.exceptions import EmptyFeedError, ParseError
from booking_sync.integrations.feeds.parser import parse_feed


class TestParseFeed:
    """Tests for parse_feed."""

    def test_parses_all_day_events(self, ics):
        """All-day entries keep date values and pass fields through."""
        content = ics.calendar(
            ics.event("a@airbnb", date(2025, 6, 1), date(2025, 6, 5), "Reserved", "CONFIRMED"),
            ics.event("b@airbnb", date(2025, 6, 10), date(2025, 6, 12), "Airbnb (Not available)"),
        )

        entries = parse_feed(content, source="test")

        assert [e.uid for e in entries] == ["a@airbnb", "b@airbnb"]
        first = entries[0]
        assert first.start == date(2025, 6, 1)
        assert first.end == date(2025, 6, 5)
        assert first.summary == "Reserved"
        assert first.status == "CONFIRMED"
        assert entries[1].status is None

    def test_parses_datetimes_and_duration(self):
        """Timed entries keep datetimes; DURATION is extracted when DTEND is missing."""
        content = "\r\n".join([
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "BEGIN:VEVENT",
            "UID:timed-1",
            "DTSTART:20250601T150000Z",
            "DURATION:P3D",
            "SUMMARY:Stay",
            "DESCRIPTION:Guest: Ana",
            "END:VEVENT",
            "END:VCALENDAR",
        ])

        [entry] = parse_feed(content)

        assert isinstance(entry.start, datetime)
        assert entry.start.tzinfo is not None
        assert entry.end is None
        assert entry.duration == timedelta(days=3)
        assert entry.description == "Guest: Ana"

    def test_missing_uid_kept(self, ics):
        """Entries without UID are passed on for the normalizer to identify."""
        [entry] = parse_feed(ics.calendar(ics.event(None, date(2025, 6, 1), date(2025, 6, 2))))
        assert entry.uid is None

    def test_skips_events_without_dtstart(self, ics):
        """Components without DTSTART are skipped."""
        content = ics.calendar(
            "BEGIN:VEVENT\r\nUID:broken\r\nSUMMARY:No start\r\nEND:VEVENT",
            ics.event("ok", date(2025, 6, 1), date(2025, 6, 2)),
        )
        entries = parse_feed(content)
        assert [e.uid for e in entries] == ["ok"]

    def test_leading_bom_and_whitespace(self, ics):
        content = "\ufeff\r\n  " + ics.calendar(ics.event("x", date(2025, 6, 1), date(2025, 6, 2)))
        assert len(parse_feed(content)) == 1

    def test_bytes_input(self, ics):
        content = ics.calendar(ics.event("x", date(2025, 6, 1), date(2025, 6, 2))).encode("utf-8")
        assert len(parse_feed(content)) == 1

    def test_not_a_calendar(self):
        """HTML error pages are rejected as ParseError."""
        with pytest.raises(ParseError) as exc_info:
            parse_feed("<html><body>Login required</body></html>", source="https://x")
        assert exc_info.value.code == "parse_failed"
        assert "https://x" in str(exc_info.value)

    def test_empty_calendar(self, ics):
        """A calendar without events raises EmptyFeedError."""
        with pytest.raises(EmptyFeedError) as exc_info:
            parse_feed(ics.calendar())
        assert exc_info.value.code == "empty_feed"
