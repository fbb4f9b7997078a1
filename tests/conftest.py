"""
Shared test helpers.
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Settable timezone-aware clock, safe to advance from worker threads."""

    def __init__(self, start: datetime):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds)

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._now = moment


@pytest.fixture
def t0():
    return datetime(2024, 5, 18, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(t0):
    return FakeClock(t0)
