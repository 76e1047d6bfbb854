"""
Unit tests for the shared enumerations and notification preferences.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from booking_sync.models.enums import NotificationType, Platform
from booking_sync.models.preferences import NotificationPreference


class TestPlatform:
    """Test Platform parsing and labels."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("airbnb", Platform.AIRBNB),
            ("Airbnb", Platform.AIRBNB),
            (" VRBO ", Platform.VRBO),
            ("Booking.com", Platform.BOOKING),
            ("homeaway", Platform.VRBO),
            (Platform.EXPEDIA, Platform.EXPEDIA),
        ],
    )
    def test_parse(self, raw, expected):
        assert Platform.parse(raw) == expected

    def test_parse_unknown(self):
        """Unknown platforms raise ValueError."""
        with pytest.raises(ValueError, match="Unknown platform"):
            Platform.parse("myspace")

    def test_labels(self):
        assert Platform.BOOKING.label == "Booking.com"
        assert Platform.AIRBNB.label == "Airbnb"
        assert all(p.label for p in Platform)


class TestNotificationPreference:
    """Test per-user notification switches."""

    def test_defaults_allow_everything(self, db_session):
        preferences = NotificationPreference(user_id="u-1")
        db_session.add(preferences)
        db_session.commit()

        assert all(preferences.allows(t) for t in NotificationType)

    def test_allows_respects_flags(self):
        preferences = NotificationPreference(user_id="u-1", new_booking=False, sync_failure=True)
        assert preferences.allows(NotificationType.NEW_BOOKING) is False
        assert preferences.allows(NotificationType.SYNC_FAILURE) is True

    def test_one_row_per_user(self, db_session):
        db_session.add(NotificationPreference(user_id="u-1"))
        db_session.commit()
        db_session.add(NotificationPreference(user_id="u-1"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_columns_match_notification_types(self):
        """Every notification type has a preference column."""
        columns = set(NotificationPreference.__table__.columns.keys())
        assert {t.value for t in NotificationType} <= columns
