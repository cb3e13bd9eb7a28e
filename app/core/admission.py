"""
app/core/admission.py — Admission control for Gemini calls
Fixed rolling window: at most `limit` grants per `window_seconds`.
Callers over the limit wait in a FIFO queue that is drained at each window
boundary, either by the scheduled wake-up or by the next acquire() that
notices the window has expired.

State is only mutated between awaits, so every operation runs as a single
critical section on the event loop. One instance is shared by every call
site in the process; it is created in the app lifespan and closed on shutdown.
"""
from __future__ import annotations

import asyncio
import math
from collections import deque
from dataclasses import dataclass
from typing import Optional

from app.core import logging as app_logging
from app.core.clock import Clock, SystemClock
from app.core.errors import AdmissionClosedError, RateLimitExceededError
from app.models import AdmissionStats


@dataclass
class RateWindow:
    count: int = 0
    window_start: float = 0.0


@dataclass
class WaitTicket:
    enqueued_at: float
    future: asyncio.Future


@dataclass(frozen=True)
class AdmissionGrant:
    granted_at: float
    waited_s: float = 0.0
    queued: bool = False


class AdmissionController:
    """Request-rate gate with a FIFO wait queue."""

    def __init__(
        self,
        limit: int = 15,
        window_seconds: float = 60.0,
        clock: Optional[Clock] = None,
        warning_percent: float = 80.0,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock: Clock = clock or SystemClock()
        self._warning_percent = warning_percent
        self._window = RateWindow(count=0, window_start=self._clock.now())
        self._queue: deque[WaitTicket] = deque()
        self._wakeup_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def count(self) -> int:
        return self._window.count

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    # ──────────────────────────────────────────────────────────────────────────
    # Acquire
    # ──────────────────────────────────────────────────────────────────────────

    async def acquire(self, timeout: Optional[float] = None) -> AdmissionGrant:
        """
        Wait for a slot in the current window.

        Grants immediately while the window has capacity and nobody is
        queued; otherwise enqueues and suspends until a window boundary
        grants this ticket. With `timeout` (clock seconds) the waiter is
        dequeued and RateLimitExceededError raised if no slot arrives in time.
        """
        if self._closed:
            raise AdmissionClosedError("Admission controller is closed")

        # One snapshot of `now` for both the reset and the grant decision
        now = self._clock.now()
        self._roll_window(now)

        if self._window.count < self._limit and not self._queue:
            self._window.count += 1
            app_logging.log_admission(
                "granted", self._window.count, self._limit, len(self._queue)
            )
            self._check_utilization()
            return AdmissionGrant(granted_at=now)

        ticket = WaitTicket(
            enqueued_at=now,
            future=asyncio.get_running_loop().create_future(),
        )
        self._queue.append(ticket)
        app_logging.log_admission(
            "queued", self._window.count, self._limit, len(self._queue)
        )
        self._schedule_wakeup()
        return await self._wait(ticket, timeout)

    async def _wait(self, ticket: WaitTicket, timeout: Optional[float]) -> AdmissionGrant:
        if timeout is None:
            try:
                return await ticket.future
            except asyncio.CancelledError:
                self._discard(ticket)
                raise

        timer = asyncio.ensure_future(self._clock.sleep(timeout))
        try:
            await asyncio.wait(
                {ticket.future, timer}, return_when=asyncio.FIRST_COMPLETED
            )
            if ticket.future.done():
                return ticket.future.result()

            self._discard(ticket)
            now = self._clock.now()
            retry_after = self.retry_after(now)
            app_logging.log_admission(
                "timeout",
                self._window.count,
                self._limit,
                len(self._queue),
                waited_s=now - ticket.enqueued_at,
            )
            raise RateLimitExceededError(retry_after)
        except asyncio.CancelledError:
            self._discard(ticket)
            raise
        finally:
            if not timer.done():
                timer.cancel()

    def _discard(self, ticket: WaitTicket) -> None:
        """Remove an abandoned ticket so no slot is granted to nothing."""
        try:
            self._queue.remove(ticket)
        except ValueError:
            pass
        else:
            app_logging.log_admission(
                "dequeued", self._window.count, self._limit, len(self._queue)
            )
        if not ticket.future.done():
            ticket.future.cancel()
            return
        if ticket.future.cancelled() or ticket.future.exception() is not None:
            return
        # Granted by _drain but cancelled before resuming: hand the slot back
        grant: AdmissionGrant = ticket.future.result()
        if grant.granted_at >= self._window.window_start and self._window.count > 0:
            self._window.count -= 1
            app_logging.log_admission(
                "returned", self._window.count, self._limit, len(self._queue)
            )
            now = self._clock.now()
            self._roll_window(now)
            self._drain(now)

    # ──────────────────────────────────────────────────────────────────────────
    # Window boundary handling
    # ──────────────────────────────────────────────────────────────────────────

    def _roll_window(self, now: float) -> None:
        if now - self._window.window_start < self._window_seconds:
            return
        self._window.count = 0
        self._window.window_start = now
        app_logging.log_admission("reset", 0, self._limit, len(self._queue))
        self._drain(now)

    def _drain(self, now: float) -> None:
        """Grant queued tickets in FIFO order up to the window's capacity."""
        granted = 0
        while self._queue and self._window.count < self._limit:
            ticket = self._queue.popleft()
            if ticket.future.done():
                continue
            self._window.count += 1
            granted += 1
            ticket.future.set_result(
                AdmissionGrant(
                    granted_at=now,
                    waited_s=now - ticket.enqueued_at,
                    queued=True,
                )
            )
        if granted:
            app_logging.log_admission(
                "drained", self._window.count, self._limit, len(self._queue)
            )
            self._check_utilization()

    def _schedule_wakeup(self) -> None:
        if self._closed or not self._queue:
            return
        if self._wakeup_task is not None and not self._wakeup_task.done():
            return
        delay = self._window.window_start + self._window_seconds - self._clock.now()
        self._wakeup_task = asyncio.get_running_loop().create_task(
            self._wake_after(delay)
        )

    async def _wake_after(self, delay: float) -> None:
        await self._clock.sleep(delay)
        self._wakeup_task = None
        self._roll_window(self._clock.now())
        # Tickets beyond capacity wait for the following window
        self._schedule_wakeup()

    def _check_utilization(self) -> None:
        utilization = (self._window.count / self._limit) * 100
        if utilization >= self._warning_percent:
            app_logging.log_high_utilization(self._window.count, self._limit, utilization)

    # ──────────────────────────────────────────────────────────────────────────
    # Observability
    # ──────────────────────────────────────────────────────────────────────────

    def retry_after(self, now: Optional[float] = None) -> int:
        """Seconds until the current window ends, rounded up."""
        if now is None:
            now = self._clock.now()
        return max(0, math.ceil(self._window.window_start + self._window_seconds - now))

    def stats(self) -> AdmissionStats:
        """Read-only snapshot; an expired window reports zero usage."""
        now = self._clock.now()
        remaining = self._window.window_start + self._window_seconds - now
        count = self._window.count if remaining > 0 else 0
        return AdmissionStats(
            count=count,
            limit=self._limit,
            queue_depth=len(self._queue),
            utilization_percent=round((count / self._limit) * 100, 2),
            window_remaining_seconds=round(max(0.0, remaining), 3),
        )

    # ──────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────────

    def close(self) -> None:
        """Fail every pending waiter and stop the wake-up timer."""
        self._closed = True
        if self._wakeup_task is not None and not self._wakeup_task.done():
            self._wakeup_task.cancel()
        self._wakeup_task = None
        while self._queue:
            ticket = self._queue.popleft()
            if not ticket.future.done():
                ticket.future.set_exception(
                    AdmissionClosedError("Admission controller shut down while waiting")
                )
