# ABOUTME: Recurring-scan schedule parsing and the scan scheduler state machine.
# ABOUTME: Triggers arriving while a scan runs are coalesced into a single follow-up run.

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from shelfindex.errors import ConfigurationError, ScanAlreadyRunning, ShelfIndexError

logger = logging.getLogger(__name__)

_WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _format_values(values: frozenset[int]) -> str:
    return "*" if not values else ",".join(str(v) for v in sorted(values))


def _validate(values: Iterable[int], low: int, high: int, label: str) -> frozenset[int]:
    result = set()
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"Schedule {label} must be integers, got {value!r}")
        if not low <= value <= high:
            raise ConfigurationError(f"Schedule {label} value {value} is outside {low}..{high}")
        result.add(value)
    return frozenset(result)


def _parse_field(field: str, low: int, high: int, label: str) -> frozenset[int]:
    if field == "*":
        return frozenset()
    values = []
    for part in field.split(","):
        if not part.isdigit():
            raise ConfigurationError(f"Invalid schedule {label} field: {field!r}")
        values.append(int(part))
    return _validate(values, low, high, label)


@dataclass(frozen=True)
class ScanSchedule:
    """When recurring scans fire.

    Each field is a set of allowed values; an empty set means "every".
    Days of week use ISO numbering (1=Monday .. 7=Sunday).
    """

    minutes: frozenset[int] = frozenset({0})
    hours: frozenset[int] = frozenset({0, 12})
    days_of_week: frozenset[int] = frozenset()

    @classmethod
    def parse(cls, expression: str) -> "ScanSchedule":
        """Parse a 5-field ``minute hour day month weekday`` expression.

        Only ``*`` and comma lists of integers are accepted. Day-of-month and
        month must be ``*``. Weekday follows cron numbering (0 or 7 = Sunday).

        Raises:
            ConfigurationError: If the expression is malformed or out of range.
        """
        fields = expression.split()
        if len(fields) != 5:
            raise ConfigurationError(
                f"Schedule {expression!r} must have 5 fields (minute hour day month weekday)"
            )
        minute, hour, day, month, weekday = fields
        if day != "*" or month != "*":
            raise ConfigurationError(
                f"Schedule {expression!r}: day-of-month and month fields must be '*'"
            )
        cron_days = _parse_field(weekday, 0, 7, "weekday")
        return cls(
            minutes=_parse_field(minute, 0, 59, "minute"),
            hours=_parse_field(hour, 0, 23, "hour"),
            days_of_week=frozenset(7 if d == 0 else d for d in cron_days),
        )

    @classmethod
    def from_lists(
        cls,
        minutes: Iterable[int] = (0,),
        hours: Iterable[int] = (0, 12),
        days_of_week: Iterable[int] = (),
    ) -> "ScanSchedule":
        """Build a schedule from explicit value lists (ISO weekdays)."""
        return cls(
            minutes=_validate(minutes, 0, 59, "minutes"),
            hours=_validate(hours, 0, 23, "hours"),
            days_of_week=_validate(days_of_week, 1, 7, "day_of_week"),
        )

    def matches(self, when: datetime) -> bool:
        """Whether a scan should fire during the minute containing ``when``."""
        return (
            (not self.minutes or when.minute in self.minutes)
            and (not self.hours or when.hour in self.hours)
            and (not self.days_of_week or when.isoweekday() in self.days_of_week)
        )

    def next_fire_time(self, after: datetime) -> datetime:
        """First matching minute strictly after ``after``."""
        candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        # A weekly schedule repeats within 7 days; one extra day covers DST shifts.
        for _ in range(8 * 24 * 60):
            if self.matches(candidate):
                return candidate
            candidate += timedelta(minutes=1)
        raise ConfigurationError(f"Schedule {self.describe()} never fires")

    def describe(self) -> str:
        days = (
            "*"
            if not self.days_of_week
            else ",".join(_WEEKDAY_NAMES[d - 1] for d in sorted(self.days_of_week))
        )
        return (
            f"minutes=[{_format_values(self.minutes)}] "
            f"hours=[{_format_values(self.hours)}] days=[{days}]"
        )


class ScanState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


ScanFunction = Callable[[threading.Event], Any]


class ScanScheduler:
    """Idle -> Running -> (Idle | Failed) state machine around a scan function.

    The scan function receives the scheduler's stop event and returns a
    summary object. Exceptions it raises are top-level faults and move the
    scheduler to FAILED; per-item problems are expected to be reported in
    the summary instead.
    """

    def __init__(
        self,
        scan: ScanFunction,
        schedule: ScanSchedule | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._scan = scan
        self._schedule = schedule or ScanSchedule()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = ScanState.IDLE
        self._rerun_requested = False
        self._worker: threading.Thread | None = None
        self._stop = threading.Event()
        self.last_summary: Any = None
        self.last_error: BaseException | None = None
        self.runs_completed = 0

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def schedule(self) -> ScanSchedule:
        return self._schedule

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def _claim(self, coalesce: bool = True) -> bool:
        """Move to RUNNING, or record a coalesced rerun if already running."""
        with self._lock:
            if self._state == ScanState.RUNNING:
                if not coalesce:
                    raise ScanAlreadyRunning("A scan is already running")
                if not self._rerun_requested:
                    logger.info("Scan already running; another run will follow it")
                self._rerun_requested = True
                return False
            self._state = ScanState.RUNNING
            return True

    def _run_claimed(self) -> None:
        """Run scans until no rerun is pending. Caller must hold the RUNNING claim."""
        while True:
            try:
                summary = self._scan(self._stop)
            except ShelfIndexError as exc:
                logger.error("Scan failed: %s", exc)
                self._finish(ScanState.FAILED, error=exc)
            except Exception as exc:
                logger.exception("Scan crashed")
                self._finish(ScanState.FAILED, error=exc)
            else:
                self.last_summary = summary
                self._finish(ScanState.IDLE)

            with self._lock:
                if not self._rerun_requested or self._stop.is_set():
                    self._rerun_requested = False
                    return
                self._rerun_requested = False
                self._state = ScanState.RUNNING
            logger.info("Running coalesced follow-up scan")

    def _finish(self, state: ScanState, error: BaseException | None = None) -> None:
        with self._lock:
            self._state = state
            self.last_error = error
            self.runs_completed += 1

    def run_once(self, *, coalesce: bool = True) -> Any:
        """Run a scan synchronously on the calling thread.

        Args:
            coalesce: When False, refuse to queue behind a running scan.

        Returns:
            The summary of the last completed run, or None if the trigger was
            coalesced into a scan that is already running elsewhere.

        Raises:
            ScanAlreadyRunning: If ``coalesce`` is False and a scan is running.
        """
        if not self._claim(coalesce):
            return None
        self._run_claimed()
        return self.last_summary

    def trigger(self) -> bool:
        """Start a scan in the background.

        Returns:
            True if a new scan thread started, False if the trigger was
            coalesced into the running scan.
        """
        if not self._claim():
            return False
        self._worker = threading.Thread(
            target=self._run_claimed, name="shelfindex-scan", daemon=True
        )
        self._worker.start()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the background scan thread finishes.

        Returns:
            True if no scan thread is alive afterwards.
        """
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
            return not worker.is_alive()
        return True

    def stop(self, timeout: float | None = None) -> None:
        """Signal the running scan to stop and wait for it."""
        self._stop.set()
        self.wait(timeout)

    def run_forever(self, poll_seconds: float = 30.0) -> None:
        """Fire scans whenever the schedule matches, until ``stop()`` is called.

        Each matching minute fires at most one trigger.
        """
        logger.info("Scheduler started: %s", self._schedule.describe())
        last_fired: datetime | None = None
        while not self._stop.is_set():
            now = self._clock().replace(second=0, microsecond=0)
            if now != last_fired and self._schedule.matches(now):
                last_fired = now
                self.trigger()
            self._stop.wait(poll_seconds)
        self.wait()
        logger.info("Scheduler stopped")
