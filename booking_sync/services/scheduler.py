"""
Periodic sync triggers.

Each configured cadence becomes a cron-driven trigger. When a trigger fires,
every connection whose own sync interval has elapsed is synced; connections
that are not yet due are left for a later fire.
"""

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional

from croniter import croniter

from booking_sync.config import Settings, get_settings
from booking_sync.models.base import utcnow
from booking_sync.schemas import ScheduledSyncResult
from booking_sync.services.reconciler import FeedReconciler

logger = logging.getLogger(__name__)


def cron_for_minutes(minutes: int) -> str:
    """
    Build the cron expression for an N-minute cadence.

    Raises:
        ValueError: If the cadence cannot be expressed as a cron schedule
    """
    if minutes <= 0:
        raise ValueError("Trigger interval must be positive")
    if minutes < 60:
        return f"*/{minutes} * * * *"
    if minutes == 60:
        return "0 * * * *"
    if minutes % 60 == 0 and minutes // 60 <= 24:
        return f"0 */{minutes // 60} * * *"
    raise ValueError(f"Cannot schedule a {minutes}-minute trigger")


def _next_fire(expression: str, after: datetime) -> datetime:
    return croniter(expression, after).get_next(datetime).replace(tzinfo=timezone.utc)


class SyncTrigger:
    """One cron schedule and the time it next fires."""

    def __init__(self, minutes: int, now: datetime):
        self.minutes = minutes
        self.expression = cron_for_minutes(minutes)
        self.next_fire = _next_fire(self.expression, now)
        self.running: Optional[Future] = None

    def is_due(self, now: datetime) -> bool:
        return self.next_fire <= now

    def advance(self, now: datetime) -> None:
        self.next_fire = _next_fire(self.expression, now)

    def __repr__(self) -> str:
        return f"<SyncTrigger({self.expression!r}, next_fire={self.next_fire.isoformat()})>"


class SyncScheduler:
    """
    Runs the periodic sync triggers on a background thread.

    Tests drive it with ``run_pending(now)`` instead of ``start()``.
    """

    def __init__(
        self,
        reconciler: FeedReconciler,
        settings: Optional[Settings] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._reconciler = reconciler
        self._settings = settings or get_settings()
        self._clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=len(self._settings.sync_trigger_minutes),
            thread_name_prefix="sync-trigger",
        )
        now = self._clock()
        self.triggers = [SyncTrigger(m, now) for m in self._settings.sync_trigger_minutes]
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_wakeup(self) -> datetime:
        return min(t.next_fire for t in self.triggers)

    def _fire(self, trigger: SyncTrigger, now: datetime) -> ScheduledSyncResult:
        try:
            return self._reconciler.sync_due_connections(trigger_minutes=trigger.minutes, now=now)
        except Exception:
            logger.exception(f"Scheduled sync for the {trigger.minutes}-minute trigger failed")
            raise

    def run_pending(self, now: Optional[datetime] = None) -> list[Future]:
        """
        Fire every trigger whose time has come.

        A trigger whose previous fire is still running is skipped for this
        round.

        Returns:
            Futures of the dispatched fires
        """
        now = now or self._clock()
        dispatched = []
        for trigger in self.triggers:
            if not trigger.is_due(now):
                continue
            trigger.advance(now)
            if trigger.running is not None and not trigger.running.done():
                logger.warning(
                    f"Skipping {trigger.minutes}-minute trigger; previous run still in progress"
                )
                continue
            logger.debug(f"Firing {trigger!r}")
            trigger.running = self._executor.submit(self._fire, trigger, now)
            dispatched.append(trigger.running)
        return dispatched

    def _loop(self) -> None:
        logger.info(
            f"Sync scheduler started with triggers: "
            f"{', '.join(t.expression for t in self.triggers)}"
        )
        while not self._stop_event.is_set():
            self.run_pending()
            delay = (self.next_wakeup() - self._clock()).total_seconds()
            self._stop_event.wait(max(delay, 1.0))
        logger.info("Sync scheduler stopped")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="sync-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop and wait for running fires to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._owns_executor:
            self._executor.shutdown(wait=True)
