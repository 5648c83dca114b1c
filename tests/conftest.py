import os

# keep the module-level app off the real database and redis
os.environ["STORE_BACKEND"] = "memory"
os.environ["REDIS_URL"] = ""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from fleetdesk.db import make_engine
from fleetdesk.main import create_app
from fleetdesk.store import MemoryRecordStore, SqlRecordStore

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> datetime:
        self.now += timedelta(**kw)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryRecordStore()
        return
    s = SqlRecordStore(make_engine(f"sqlite:///{tmp_path / 'fleetdesk.db'}"))
    s.init()
    yield s
    s.engine.dispose()


@pytest.fixture
def app(store, notifier, clock):
    return create_app(store=store, notifier=notifier, clock=clock,
                      threshold=timedelta(seconds=30))


@pytest.fixture
def client(app):
    return TestClient(app)
