"""Shared fixtures for the qix test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from qix.config import Config
from qix.storage import Storage
from qix.tracking import TimeTracker


class FixedClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 15, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config(tmp_path):
    return Config.load(base_dir=tmp_path / "qix", env={})


@pytest.fixture
def storage(config, clock):
    """Storage bound to a temporary data directory, writing index snapshots synchronously."""
    store = Storage(config, clock=clock, background_index=False)
    yield store
    store.close()


@pytest.fixture
def tracker(storage):
    return TimeTracker(storage)


@pytest.fixture
def demo_project(storage):
    """Project 'demo' with a 'backend' module, one project-level task and one module task."""
    storage.create_project("demo", "Demo project")
    storage.add_module("demo", "backend")
    top = storage.add_task("demo", "Write docs", task_id="0000000a")
    nested = storage.add_task("demo", "Build API", "backend", task_id="0000000b", estimated_hours=4)
    return {"project": "demo", "top": top, "nested": nested}
