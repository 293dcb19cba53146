# =============================================
# File: tests/test_timing.py
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from journal_ai.utils.timing import Deadline, timer


class _Clock:
    def __init__(self):
        self.t = 100.0

    def __call__(self):
        return self.t


def test_deadline_caps_timeouts():
    clock = _Clock()
    d = Deadline(seconds=5, clock=clock)
    assert d.timeout(12) == 5
    assert d.timeout(2) == 2
    clock.t += 4
    assert d.timeout(12) == 1
    assert not d.expired


def test_expired_deadline_still_gives_minimal_timeout():
    clock = _Clock()
    d = Deadline(seconds=1, clock=clock)
    clock.t += 10
    assert d.expired
    assert d.remaining() == 0.0
    assert d.timeout(12) == 0.1


def test_deadline_budget_from_env(monkeypatch):
    monkeypatch.setenv("REQUEST_DEADLINE_SECONDS", "3")
    clock = _Clock()
    assert Deadline(clock=clock).remaining() == 3


def test_timer_reports_elapsed_ms():
    with timer() as elapsed:
        pass
    assert isinstance(elapsed(), int)
    assert elapsed() >= 0
