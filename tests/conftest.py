# tests/conftest.py
import os
import tempfile

# point the package at a throwaway database before it is imported
_tmpdir = tempfile.mkdtemp(prefix="propwatch-test-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_tmpdir, "test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "0")

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402

from propwatch import models  # noqa: E402,F401
from propwatch.db import Base, SessionLocal, engine  # noqa: E402
from propwatch.schemas import HealthCheckResult, ListingRecord  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, 0)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def record():
    def make(**overrides):
        data = {
            "source": "portal-a",
            "external_id": "a-1",
            "title": "",
            "price": 120000,
            "area_m2": 65,
            "city": "Bratislava",
            "district": "Ruzinov",
            "rooms": 2,
            "source_url": "https://portal-a.example/a-1",
        }
        data.update(overrides)
        return ListingRecord(**data)
    return make


class FakeChecker:
    """Returns queued results per property id; an exception in the queue is raised."""

    def __init__(self, results=None, default=None):
        self.results = dict(results or {})
        self.default = default or HealthCheckResult()
        self.calls = []

    def check(self, target):
        self.calls.append(target.id)
        result = self.results.get(target.id, self.default)
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def checker():
    return FakeChecker()


@pytest.fixture
def clock():
    return FakeClock()
