"""Unit tests for time tracking sessions."""

import json
from unittest.mock import patch

import pytest

from qix.errors import StorageIOError, TaskNotFoundError, TrackingError, ValidationFailedError


class TestSessions:
    """Test cases for starting and stopping sessions."""

    def test_start_creates_session(self, tracker, demo_project):
        session = tracker.start_tracking("demo", "0000000b", "backend")

        assert session.path == "demo/backend"
        assert session.start == "2024-03-15T09:00:00Z"
        assert tracker.is_tracking()
        data = json.loads(tracker.path.read_text())
        assert data["active_session"]["task_id"] == "0000000b"

    def test_start_requires_existing_task(self, tracker, demo_project):
        with pytest.raises(TaskNotFoundError):
            tracker.start_tracking("demo", "ffffffff")
        assert not tracker.is_tracking()

    def test_only_one_session(self, tracker, demo_project):
        tracker.start_tracking("demo", "0000000a")

        with pytest.raises(TrackingError, match="0000000a"):
            tracker.start_tracking("demo", "0000000b", "backend")

    def test_stop_logs_elapsed_time(self, tracker, storage, demo_project, clock):
        tracker.start_tracking("demo", "0000000b", "backend")
        clock.advance(minutes=90)

        result = tracker.stop_tracking()

        assert result.path == "demo/backend"
        assert result.task_id == "0000000b"
        assert result.hours == pytest.approx(1.5)
        assert result.elapsed.total_seconds() == 5400
        task, _ = storage.find_task("demo", "0000000b")
        assert task.actual_hours == pytest.approx(1.5)
        assert task.time_entries[-1].date == "2024-03-15"
        assert not tracker.is_tracking()

    def test_stop_with_module_path_uses_project(self, tracker, storage, demo_project, clock):
        """The project is taken from the part of the path before the module."""
        tracker.start_tracking("demo", "0000000b", "backend")
        clock.advance(hours=1)

        tracker.stop_tracking()

        assert storage.find_task("demo", "0000000b")[0].actual_hours == pytest.approx(1)

    def test_stop_without_session(self, tracker):
        with pytest.raises(TrackingError, match="no active"):
            tracker.stop_tracking()

    def test_zero_length_session_logs_nothing(self, tracker, storage, demo_project):
        tracker.start_tracking("demo", "0000000a")

        result = tracker.stop_tracking()

        assert result.hours == 0
        assert result.entry is None
        assert storage.find_task("demo", "0000000a")[0].time_entries == []
        assert not tracker.is_tracking()

    def test_failed_log_keeps_session(self, tracker, storage, demo_project, clock):
        tracker.start_tracking("demo", "0000000a")
        clock.advance(minutes=30)

        with patch("qix.codec.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageIOError):
                tracker.stop_tracking()
        assert tracker.is_tracking()

    def test_stop_after_task_removed_discards_session(self, tracker, storage, demo_project, clock):
        tracker.start_tracking("demo", "0000000a")
        clock.advance(minutes=30)
        storage.remove_task("demo", "0000000a")

        result = tracker.stop_tracking()

        assert result.entry is None
        assert result.hours == pytest.approx(0.5)
        assert not tracker.is_tracking()

    def test_switch_after_project_deleted(self, tracker, storage, demo_project, clock):
        storage.create_project("other")
        other = storage.add_task("other", "Elsewhere")
        tracker.start_tracking("other", other.id)
        clock.advance(minutes=10)
        storage.delete_project("other")

        session = tracker.switch_tracking("demo", "0000000b", "backend")

        assert session.task_id == "0000000b"
        assert tracker.active_session().path == "demo/backend"

    def test_switch_stops_current(self, tracker, storage, demo_project, clock):
        tracker.start_tracking("demo", "0000000a")
        clock.advance(minutes=30)

        session = tracker.switch_tracking("demo", "0000000b", "backend")

        assert session.task_id == "0000000b"
        assert storage.find_task("demo", "0000000a")[0].actual_hours == pytest.approx(0.5)

    def test_switch_without_session(self, tracker, demo_project):
        assert tracker.switch_tracking("demo", "0000000a").task_id == "0000000a"

    def test_elapsed(self, tracker, demo_project, clock):
        with pytest.raises(TrackingError):
            tracker.elapsed()

        tracker.start_tracking("demo", "0000000a")
        clock.advance(minutes=5)

        assert tracker.elapsed().total_seconds() == 300

    def test_events(self, tracker, storage, demo_project, clock):
        events = []
        storage.events.register_hook("tracking_started", lambda **d: events.append(("start", d["task_id"])))
        storage.events.register_hook("tracking_stopped", lambda **d: events.append(("stop", d["task_id"])))

        tracker.start_tracking("demo", "0000000a")
        clock.advance(minutes=6)
        tracker.stop_tracking()

        assert events == [("start", "0000000a"), ("stop", "0000000a")]


class TestTimeQueries:
    """Test cases for time entry queries."""

    def test_log_time(self, tracker, storage, demo_project):
        entry = tracker.log_time("demo", "0000000a", 2, "2024-03-14")

        assert entry.hours == 2
        assert storage.find_task("demo", "0000000a")[0].actual_hours == 2

        with pytest.raises(ValidationFailedError):
            tracker.log_time("demo", "0000000a", -1)

    def test_entries_for_date(self, tracker, storage, demo_project):
        storage.create_project("other")
        storage.add_task("other", "Elsewhere", task_id="0000000c")
        tracker.log_time("demo", "0000000a", 1)
        tracker.log_time("demo", "0000000b", 2)
        tracker.log_time("other", "0000000c", 0.5)
        tracker.log_time("other", "0000000c", 4, "2024-03-01")

        by_project = tracker.time_entries_for_date("2024-03-15")

        assert sorted(by_project) == ["demo", "other"]
        assert len(by_project["demo"]) == 2
        assert tracker.total_hours_for_date("2024-03-15") == pytest.approx(3.5)
        assert tracker.time_entries_for_date("2024-02-01") == {}

    def test_entries_in_range(self, tracker, demo_project):
        tracker.log_time("demo", "0000000a", 1, "2024-03-01")
        tracker.log_time("demo", "0000000a", 2, "2024-03-10")
        tracker.log_time("demo", "0000000b", 3, "2024-03-20")

        entries = tracker.time_entries_in_range("demo", "2024-03-01", "2024-03-10")

        assert sorted(entry.hours for entry in entries) == [1, 2]
