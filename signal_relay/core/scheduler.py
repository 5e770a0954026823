#!/usr/bin/env python3
"""
MINUTE SCHEDULER
================

Jobs that must run once per wall-clock minute (daily risk reset check).

The clock is injected: SystemClock in production, VirtualClock in tests.
tick() may be called any number of times per minute (main.py drives it from
the `schedule` loop every few seconds); each job still runs once per minute key.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from signal_relay.logging.logger_config import get_component_logger
from signal_relay.utils.utils import log_exception

logger = get_component_logger('core')

Job = Callable[[datetime], None]


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class VirtualClock:
    """Manually advanced clock for tests."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when if when.tzinfo else when.replace(tzinfo=timezone.utc)


def minute_key(when: datetime) -> str:
    return when.strftime("%Y-%m-%dT%H:%M")


class MinuteScheduler:

    def __init__(self, clock: Clock):
        self.clock = clock
        self._jobs: List[Tuple[str, Job]] = []
        self._last_run: Dict[str, str] = {}

    def every_minute(self, name: str, job: Job) -> None:
        self._jobs.append((name, job))

    def tick(self) -> List[str]:
        """Run jobs not yet run in the current minute. Returns the names that ran."""
        now = self.clock.now()
        key = minute_key(now)
        ran = []

        for name, job in self._jobs:
            if self._last_run.get(name) == key:
                continue
            self._last_run[name] = key
            try:
                job(now)
                ran.append(name)
            except Exception as e:
                log_exception(f"scheduler.{name}", e)

        return ran
