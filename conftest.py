import random
from datetime import datetime, timezone

import pytest

from flashdrill.scheduler import ReviewScheduler

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class ForcedRandom(random.Random):
    """randrange always returns the same offset, clamped to the range."""

    def __init__(self, value=0):
        super().__init__(0)
        self.value = value

    def randrange(self, n):
        return min(self.value, n - 1)


@pytest.fixture
def make_scheduler():
    """Scheduler factory with a pinned clock; ``value`` forces every requeue offset."""
    def _make(value=0):
        return ReviewScheduler(rng=ForcedRandom(value), clock=lambda: NOW)
    return _make
