"""Poll scheduler: start a collection pass now and then every max look-back.

Each window is anchored at the time its pass is launched, not at the time the
previous pass finished. With the tick period equal to ``max_look_back``,
consecutive tick windows are disjoint and the ``min_look_back`` stretch
between them is never queried. Windows overlap only when two passes are
launched closer together than the window width (``max_look_back -
min_look_back``), for example the startup pass of a restarted process.
Overlapping windows re-deliver the traces they share.

Passes are not serialized: a slow pass does not delay the next tick, and
several passes may be in flight at once.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from xotel.xray.summaries import PollWindow

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Scheduler state."""

    IDLE = "idle"
    RUNNING_PASS = "running-pass"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PollScheduler:
    """Launches one independent pass per tick over a trailing window."""

    def __init__(
        self,
        run_pass: Callable[[PollWindow], None],
        max_look_back: timedelta,
        min_look_back: timedelta,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the scheduler.

        Args:
            run_pass: Called with each window, in its own thread
            max_look_back: Oldest edge of the window and the tick period
            min_look_back: Newest edge of the window
            stop_event: Shared stop signal
            clock: Source of the tick time
        """
        if min_look_back <= timedelta(0) or max_look_back <= min_look_back:
            raise ValueError("look-back durations must satisfy 0 < min_look_back < max_look_back")
        self._run_pass = run_pass
        self.max_look_back = max_look_back
        self.min_look_back = min_look_back
        self.stop_event = stop_event or threading.Event()
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight = 0
        self.passes_started = 0

    @property
    def period_seconds(self) -> float:
        return self.max_look_back.total_seconds()

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return SchedulerState.RUNNING_PASS if self._in_flight else SchedulerState.IDLE

    def window_at(self, now: datetime) -> PollWindow:
        return PollWindow.trailing(now, self.max_look_back, self.min_look_back)

    def _run_tracked(self, window: PollWindow) -> None:
        try:
            self._run_pass(window)
        except Exception:
            logger.exception("poll pass %s - %s failed", window.start, window.end)
        finally:
            with self._lock:
                self._in_flight -= 1

    def launch_pass(self, now: Optional[datetime] = None) -> threading.Thread:
        """Start a pass for the window anchored at ``now`` without waiting for it."""
        window = self.window_at(now or self._clock())
        with self._lock:
            self._in_flight += 1
            self.passes_started += 1
            number = self.passes_started
        thread = threading.Thread(
            target=self._run_tracked,
            args=(window,),
            name=f"xotel-pass-{number}",
            daemon=True,
        )
        thread.start()
        return thread

    def run(self) -> None:
        """Run one pass immediately, then one per tick until stopped."""
        logger.info(
            "polling X-Ray every %ss (window %s to %s ago)",
            int(self.period_seconds),
            self.max_look_back,
            self.min_look_back,
        )
        self.launch_pass()
        next_tick = time.monotonic() + self.period_seconds
        while not self.stop_event.wait(max(0.0, next_tick - time.monotonic())):
            next_tick += self.period_seconds
            self.launch_pass()
