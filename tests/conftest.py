"""Shared fixtures for the LED-Sync test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from runtime.store.state_log import StateLog


PACIFIC = timezone(timedelta(hours=-8))


class FakeClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.current = start or datetime(2025, 3, 1, 10, 0, 0, tzinfo=PACIFIC)
        self.step = step

    def __call__(self):
        value = self.current
        self.current += self.step
        return value


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def log_path(tmp_path):
    return tmp_path / "data" / "result.txt"


@pytest.fixture
def state_log(log_path, clock):
    return StateLog(log_path, clock=clock, fsync=False, lock_timeout=1.0)


def read_lines(path):
    """Non-empty raw lines of a log file."""
    return [line for line in path.read_text(encoding="utf-8").split("\n") if line]
