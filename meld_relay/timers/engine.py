"""
timers/engine.py — Elapsed-time counters for recording and streaming.

One TimerEngine per output kind. Meld Studio only tells us *that* recording or
streaming is active, never for how long, so the relay derives an HH:MM:SS
counter from the start/stop transitions and publishes it once per tick:

  remote isRecordingChanged ─┐
                             ├─► on_remote_state_change(active) ─► start()/stop()
  local "Start Rec" button ──┘                                         │
                                                                       ▼
                                       publish({"recording_timecode": "00:01:07"})

start() and stop() are idempotent, so the optimistic local update and the
later remote confirmation can both land without resetting the counter.
A dropped connection only suspends the counter. The next bind either resumes
it from the original start time or resets the display to 00:00:00.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

ZERO_TIMECODE = "00:00:00"

VariableSink = Callable[[dict[str, str]], None]


def format_hms(ms: Any) -> str:
    """Format a duration in milliseconds as zero-padded HH:MM:SS.

    Negative, non-finite and non-numeric inputs format as 00:00:00.
    Hours are not clamped: 100 hours formats as "100:00:00".
    """
    try:
        ms = float(ms)
    except (TypeError, ValueError):
        ms = 0.0
    if not math.isfinite(ms) or ms < 0:
        ms = 0.0
    total = int(ms // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


class TimerEngine:
    def __init__(
        self,
        kind: str,
        variable_id: str,
        publish: VariableSink,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.kind = kind
        self.variable_id = variable_id
        self.tick_interval = tick_interval
        self._publish = publish
        self._clock = clock

        self._active = False
        self._started_at: Optional[float] = None
        self._suspended_at: Optional[float] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._value = ZERO_TIMECODE

    # ── State ─────────────────────────────────────────────────────────

    @property
    def active(self) -> bool:
        return self._active

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at

    @property
    def value(self) -> str:
        """Last published timecode."""
        return self._value

    def elapsed_ms(self) -> float:
        if not self._active or self._started_at is None:
            return 0.0
        return max(0.0, (self._clock() - self._started_at) * 1000.0)

    # ── Transitions ───────────────────────────────────────────────────

    def on_remote_state_change(self, active: bool) -> None:
        """Apply an authoritative remote state. Redundant notifications are no-ops.

        After a suspend, an active report resumes from the original start
        time and an inactive one clears the frozen value.
        """
        if active and not self._active:
            if self._suspended_at is not None:
                self._resume()
            else:
                self.start()
        elif not active and (self._active or self._value != ZERO_TIMECODE):
            self.stop()

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._started_at = self._clock()
        self._suspended_at = None
        self._cancel_tick()
        self._tick_task = self._spawn_ticker()
        log.info(f"{self.kind} timer started")

    def stop(self) -> None:
        """Stop counting and publish the reset value immediately."""
        was_active = self._active
        self._active = False
        self._started_at = None
        self._suspended_at = None
        self._cancel_tick()
        self._emit(ZERO_TIMECODE)
        if was_active:
            log.info(f"{self.kind} timer stopped")

    def toggle(self) -> None:
        if self._active:
            self.stop()
        else:
            self.start()

    def suspend(self) -> None:
        """Stop ticking on disconnect but leave the last displayed value in place.

        The start time is kept. If the next bind reports the output still
        active, counting resumes from it; if it reports the output idle, the
        display resets to 00:00:00.
        """
        if not self._active:
            return
        log.info(f"{self.kind} timer suspended (connection lost at {self._value})")
        self._active = False
        self._suspended_at = self._started_at
        self._started_at = None
        self._cancel_tick()

    def _resume(self) -> None:
        self._active = True
        self._started_at = self._suspended_at
        self._suspended_at = None
        self._cancel_tick()
        self._tick_task = self._spawn_ticker()
        log.info(f"{self.kind} timer resumed")
        self.tick()

    def tick(self) -> str:
        """Recompute the elapsed time and publish it."""
        value = format_hms(self.elapsed_ms())
        self._emit(value)
        return value

    # ── Internals ─────────────────────────────────────────────────────

    def _emit(self, value: str) -> None:
        self._value = value
        try:
            self._publish({self.variable_id: value})
        except Exception as e:
            log.error(f"{self.kind} timer publish failed: {e}")

    def _spawn_ticker(self) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug(f"{self.kind} timer started outside an event loop; ticks are manual")
            return None
        return loop.create_task(self._tick_loop())

    async def _tick_loop(self) -> None:
        while self._active:
            await asyncio.sleep(self.tick_interval)
            if not self._active:
                break
            self.tick()

    def _cancel_tick(self) -> None:
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None
