"""
Booking Sync.

Keeps property booking calendars consistent with external iCalendar feeds
and tracks conflicting bookings.
"""

__version__ = "0.1.0"
