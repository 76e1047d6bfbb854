"""
iCalendar feed integration.

Fetches platform feeds over HTTP and turns them into normalized events.
"""

from booking_sync.integrations.feeds.client import FeedClient, FeedValidation, normalize_feed_url
from booking_sync.integrations.feeds.normalizer import (
    DEFAULT_RULES,
    CategoryRule,
    EventNormalizer,
    NormalizedEvent,
    canonical_status,
)
from booking_sync.integrations.feeds.parser import parse_feed

__all__ = [
    "FeedClient",
    "FeedValidation",
    "normalize_feed_url",
    "DEFAULT_RULES",
    "CategoryRule",
    "EventNormalizer",
    "NormalizedEvent",
    "canonical_status",
    "parse_feed",
]
