# =============================================
# File: journal_ai/utils/timing.py
# Purpose: Stopwatch + per-request deadline propagated to blocking calls
# =============================================
from __future__ import annotations
import os
import time
from contextlib import contextmanager


@contextmanager
def timer():
    t0 = time.perf_counter()
    yield lambda: int((time.perf_counter() - t0) * 1000)


def _default_budget() -> float:
    return float(os.getenv("REQUEST_DEADLINE_SECONDS", "15"))


class Deadline:
    """
    Wall-clock budget for one inbound request. Each blocking call asks for
    `timeout(cap)` so the provider call and the entry fetch never outlive the
    request that started them.
    """

    def __init__(self, seconds: float | None = None, clock=time.monotonic):
        self._clock = clock
        self._expires = clock() + (seconds if seconds is not None else _default_budget())

    def remaining(self) -> float:
        return max(0.0, self._expires - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def timeout(self, cap: float) -> float:
        # never hand out a zero timeout: requests/openai treat 0 as "fail immediately"
        return max(0.1, min(cap, self.remaining()))
