"""
End-to-end scenarios for the tracker storage core.

Each test drives the storage context the way a command handler would and
then checks both the in-memory state and what landed on disk.
"""

import json
import re
import time

import pytest

from qix.config import Config
from qix.consistency import find_orphaned_references
from qix.errors import InvalidReferenceError
from qix.storage import Storage
from qix.tracking import TimeTracker


class TestCreateAndFind:
    """Scenario: create a project and a task, then find it again."""

    def test_create_project_and_task(self, storage):
        storage.create_project("demo")
        task = storage.add_task("demo", "Build X")

        assert re.fullmatch(r"[0-9a-f]{8}", task.id)
        assert task.priority == "medium"

        found, location = storage.find_task("demo", task.id)
        assert found.title == "Build X"
        assert found.status == "todo"
        assert location == "project"

    def test_survives_restart(self, storage, config, clock):
        storage.create_project("demo")
        storage.add_module("demo", "api")
        task = storage.add_task("demo", "Build X", "api")
        storage.close()

        reopened = Storage(config, clock=clock, background_index=False)
        try:
            found, location = reopened.find_task("demo", task.id)
            assert found == task
            assert location == "module:api"
            assert reopened.locate_task(task.id).project == "demo"
        finally:
            reopened.close()


class TestTrackTime:
    """Scenario: start tracking, wait, stop."""

    def test_tracked_time_lands_on_task(self, tmp_path):
        config = Config.load(base_dir=tmp_path, env={})
        with Storage(config) as store:
            tracker = TimeTracker(store)
            store.create_project("demo")
            task = store.add_task("demo", "Build X")

            started = time.monotonic()
            tracker.start_tracking("demo", task.id)
            time.sleep(0.2)
            result = tracker.stop_tracking()
            waited = time.monotonic() - started

            found, _ = store.find_task("demo", task.id)
            assert found.actual_hours == pytest.approx(result.hours)
            assert 0.2 / 3600 <= found.actual_hours <= (waited + 1) / 3600
            assert not tracker.is_tracking()

    def test_tracking_with_fixed_clock(self, storage, tracker, clock):
        storage.create_project("demo")
        task = storage.add_task("demo", "Build X")
        storage.add_time_entry("demo", task.id, 1)

        tracker.start_tracking("demo", task.id)
        clock.advance(minutes=45)
        tracker.stop_tracking()

        assert storage.find_task("demo", task.id)[0].actual_hours == pytest.approx(1.75)
        assert json.loads(storage.config.tracking_file.read_text())["active_session"] is None


class TestRecurringCompletion:
    """Scenario: complete a task that recurs every three days."""

    def test_interval_recurrence(self, storage, clock):
        storage.create_project("demo")
        task = storage.add_task("demo", "Water plants")
        storage.set_task_recurrence("demo", task.id, "interval:3")

        done = storage.complete_task("demo", task.id)

        assert done.status == "done"
        assert done.recurrence.next_due == "2024-03-18"
        assert done.recurrence.last_completed == "2024-03-15"
        on_disk = json.loads(storage.config.project_path("demo").read_text())
        assert on_disk["tasks"][0]["recurrence"]["next_due"] == "2024-03-18"


class TestDependencies:
    """Scenario: dependency links between two tasks."""

    def test_two_cycle_accepted_self_reference_rejected(self, storage):
        storage.create_project("demo")
        a = storage.add_task("demo", "A")
        b = storage.add_task("demo", "B")

        storage.add_task_dependency("demo", a.id, b.id)
        storage.add_task_dependency("demo", b.id, a.id)

        assert storage.find_task("demo", a.id)[0].dependencies == [b.id]
        assert storage.find_task("demo", b.id)[0].dependencies == [a.id]

        with pytest.raises(InvalidReferenceError):
            storage.add_task_dependency("demo", a.id, a.id)


class TestBackupRestoreHooks:
    """Flush before backup, reload after restore."""

    def test_restore_round_trip(self, storage, demo_project):
        storage.flush_all()
        backup = {name: storage.config.project_path(name).read_bytes() for name in storage.list_projects()}

        storage.add_task("demo", "After backup", task_id="0000000c")
        storage.create_project("scratch")

        storage.config.project_path("scratch").unlink()
        for name, content in backup.items():
            storage.config.project_path(name).write_bytes(content)
        storage.reload_after_restore()

        assert storage.list_projects() == ["demo"]
        assert storage.index.lookup("0000000c") is None
        assert storage.index.validate() == []
        assert find_orphaned_references(storage, "demo")["parent_references"] == []
