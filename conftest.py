from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from ledger import open_ledger
from storage import MemoryStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def kv_store():
    return MemoryStore()


@pytest.fixture
def ledger(kv_store, clock):
    ids = count(100)
    return open_ledger(kv_store, clock=clock, id_factory=lambda: f"id-{next(ids)}")
