from datetime import datetime

import pytest

from fakes import FakeClock, SleepRecorder


@pytest.fixture
def clock():
    # Mid-month, mid-day local time keeps day and month boundaries out of reach
    return FakeClock(datetime(2026, 3, 15, 12, 0, 0).timestamp())


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()
