# =============================================
# File: journal_ai/utils/ratelimit.py
# Purpose: Tiered per-user rate limiter (fixed window) with in-memory storage
# =============================================
"""
Free-tier users get `RL_MAX_REQS` generation calls per `RL_WINDOW_SECONDS`
(10 per 24h by default). Premium users bypass the window table entirely.

The table lives in process memory, so quotas are per instance and reset on
restart. A shared counter store can replace `_windows` behind the same
`admit()` contract.
"""
from __future__ import annotations
import os
import threading
import time
from typing import Callable, Dict, Optional

from loguru import logger

from journal_ai.services.models import Admission, RateWindow
from journal_ai.utils import slog

_SWEEP_BATCH = 500


def _get_limits() -> tuple[int, int]:
    """Read limits at call time so tests/env overrides take effect."""
    max_reqs = int(os.getenv("RL_MAX_REQS", "10"))
    window_s = int(os.getenv("RL_WINDOW_SECONDS", str(24 * 60 * 60)))
    return max_reqs, window_s


def _sweep_interval() -> float:
    return float(os.getenv("RL_SWEEP_INTERVAL_SECONDS", "3600"))


class RateLimiter:
    def __init__(
        self,
        capacity: int | None = None,
        window_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        env_capacity, env_window = _get_limits()
        self.capacity = capacity if capacity is not None else env_capacity
        self.window_seconds = window_seconds if window_seconds is not None else env_window
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, RateWindow] = {}

    def _current_window(self, owner_id: str, now: float) -> RateWindow:
        # caller holds self._lock
        win = self._windows.get(owner_id)
        if win is None:
            win = RateWindow(owner_id=owner_id, count=0, reset_at=now + self.window_seconds)
            self._windows[owner_id] = win
        elif now > win.reset_at:
            win.count = 0
            win.reset_at = now + self.window_seconds
        return win

    def admit(self, owner_id: str, tier: str) -> Admission:
        if tier == "premium":
            return Admission(allowed=True, remaining=None, reset_at=None, limit=None)

        now = self._clock()
        with self._lock:
            win = self._current_window(owner_id, now)
            if win.count >= self.capacity:
                return Admission(allowed=False, remaining=0, reset_at=win.reset_at, limit=self.capacity)
            win.count += 1
            return Admission(
                allowed=True,
                remaining=self.capacity - win.count,
                reset_at=win.reset_at,
                limit=self.capacity,
            )

    def admit_with_lookup(self, owner_id: str, lookup_tier: Callable[[], str]) -> Admission:
        """
        Resolve the caller's tier, then admit. A failing tier lookup admits
        the request: journaling availability wins over strict quota enforcement.
        """
        try:
            tier = lookup_tier()
        except Exception as e:
            logger.warning(f"Tier lookup failed for rate limiting, failing open: {e}")
            slog.log_event("ratelimit.fail_open", user=slog.uhash(owner_id), error=str(e))
            return Admission(allowed=True, remaining=None, reset_at=None, limit=None)
        return self.admit(owner_id, tier)

    def status(self, owner_id: str, tier: str) -> Admission:
        """Read-only quota view (never creates or resets a window)."""
        if tier == "premium":
            return Admission(allowed=True, remaining=None, reset_at=None, limit=None)
        now = self._clock()
        with self._lock:
            win = self._windows.get(owner_id)
            if win is None or now > win.reset_at:
                return Admission(allowed=True, remaining=self.capacity, reset_at=None, limit=self.capacity)
            remaining = max(0, self.capacity - win.count)
            return Admission(allowed=remaining > 0, remaining=remaining, reset_at=win.reset_at, limit=self.capacity)

    def sweep(self, now: float | None = None) -> int:
        """
        Drop windows whose reset_at is more than one window length in the past.
        Copy-then-filter: the scan runs outside the lock, deletes go in batches.
        """
        now = self._clock() if now is None else now
        cutoff = now - self.window_seconds
        with self._lock:
            snapshot = [(k, w.reset_at) for k, w in self._windows.items()]

        stale = [k for k, reset_at in snapshot if reset_at < cutoff]
        removed = 0
        for i in range(0, len(stale), _SWEEP_BATCH):
            with self._lock:
                for key in stale[i:i + _SWEEP_BATCH]:
                    win = self._windows.get(key)
                    # window may have been reset by a concurrent admit since the snapshot
                    if win is not None and win.reset_at < cutoff:
                        del self._windows[key]
                        removed += 1
        if removed:
            slog.log_event("ratelimit.sweep", removed=removed, remaining_windows=len(self._windows))
        return removed

    def window_count(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self) -> None:
        """For tests: clear in-memory counters."""
        with self._lock:
            self._windows.clear()


class WindowSweeper:
    """Background thread that calls `limiter.sweep()` on a fixed interval."""

    def __init__(self, limiter: RateLimiter, interval_seconds: float | None = None) -> None:
        self._limiter = limiter
        self._interval = interval_seconds if interval_seconds is not None else _sweep_interval()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ratelimit-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._limiter.sweep()
            except Exception:
                logger.exception("Rate-limit window sweep failed")
