"""Pytest fixtures: isolated DB per test, fake clock, manual scheduler, FastAPI TestClient."""
import os
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

# Point the app's module-level engine at a throwaway DB before anything imports db.
os.environ.setdefault("FOCUS_DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

from config import EngineSettings
from focus_engine.context import FocusContext
from focus_engine.errors import PersistenceFailure
from focus_engine.events import EventBus
from focus_engine.recorder import SessionRecorder
from focus_engine.store import FocusStore
from models import Profile, Task

USER_ID = "user-1"
TASK_ID = "task-1"
T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class _Job:
    def __init__(self, due, interval, callback):
        self.due = due
        self.interval = interval
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Runs scheduled callbacks as a FakeClock is moved forward."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.jobs = []

    def every(self, interval, callback):
        job = _Job(self.clock() + timedelta(seconds=interval), interval, callback)
        self.jobs.append(job)
        return job

    def call_later(self, delay, callback):
        job = _Job(self.clock() + timedelta(seconds=delay), None, callback)
        self.jobs.append(job)
        return job

    @property
    def pending(self):
        return [job for job in self.jobs if not job.cancelled]

    def advance(self, seconds: float) -> None:
        end = self.clock() + timedelta(seconds=seconds)
        while True:
            due = [job for job in self.pending if job.due <= end]
            if not due:
                break
            job = min(due, key=lambda j: j.due)
            self.clock.now = max(self.clock.now, job.due)
            if job.interval is None:
                job.cancelled = True
            else:
                job.due += timedelta(seconds=job.interval)
            job.callback()
        self.clock.now = end


class EventLog:
    def __init__(self, bus: EventBus, *event_types):
        self.events = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type):
        return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False}
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


def add_rows(engine, *rows):
    with Session(engine) as db:
        for row in rows:
            db.add(row)
        db.commit()


@pytest.fixture
def store(engine):
    return FocusStore(lambda: Session(engine))


class FailingStore(FocusStore):
    """FocusStore whose named operations fail as if the database were down."""

    def __init__(self, session_factory, fail_on):
        super().__init__(session_factory)
        self.fail_on = set(fail_on)

    @contextmanager
    def _db(self, operation):
        if operation in self.fail_on:
            raise PersistenceFailure(operation, "database is locked")
        with super()._db(operation) as db:
            yield db


@pytest.fixture
def failing_store(engine):
    def make(*operations):
        return FailingStore(lambda: Session(engine), operations)
    return make


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def event_log(bus):
    def make(*event_types):
        return EventLog(bus, *event_types)
    return make


@pytest.fixture
def profile(engine):
    add_rows(engine, Profile(id=USER_ID, xp=0, coins=0, level=1))


@pytest.fixture
def task(engine, profile, store):
    add_rows(engine, Task(id=TASK_ID, user_id=USER_ID, title="Write report"))
    return store.get_task(TASK_ID)


@pytest.fixture
def recorder(store, settings, bus):
    return SessionRecorder(store, settings, bus)


@pytest.fixture
def context(store, scheduler, settings, clock, bus, task):
    ctx = FocusContext(USER_ID, store, scheduler, settings, clock, bus)
    yield ctx
    ctx.close()


@pytest.fixture
def client(store):
    from db import get_store
    from main import app

    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
