"""Unit tests for qix models.

This module tests the data structures, their serialization and the
derived values computed from them.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from qix.models import (
    PROJECT_LOCATION,
    Module,
    Project,
    Recurrence,
    Sprint,
    Task,
    TaskLocation,
    TimeEntry,
    TrackingData,
    TrackingSession,
    isoformat,
    location_module,
    module_location,
    parse_timestamp,
)


def _entry(hours, day="2024-03-15"):
    return TimeEntry(date=day, hours=hours, logged_at="2024-03-15T10:00:00Z")


class TestTask:
    """Test cases for Task."""

    def test_actual_hours_is_sum_of_entries(self):
        """Actual hours are derived from the time entries."""
        task = Task(id="abcd1234", title="Test")
        assert task.actual_hours == 0

        task.time_entries.append(_entry(1.5))
        task.time_entries.append(_entry(2.25))
        assert task.actual_hours == pytest.approx(3.75)

        task.time_entries.pop()
        assert task.actual_hours == pytest.approx(1.5)

    def test_actual_hours_not_serialized(self):
        """The derived sum is never stored in the document."""
        task = Task(id="abcd1234", title="Test", time_entries=[_entry(2)])
        assert "actual_hours" not in task.to_dict()

    def test_variance_and_budget(self):
        task = Task(id="abcd1234", title="Test", estimated_hours=4, time_entries=[_entry(5)])

        assert task.variance == pytest.approx(1)
        assert task.variance_percentage == pytest.approx(25)
        assert task.is_over_budget()

    def test_no_estimate_is_never_over_budget(self):
        task = Task(id="abcd1234", title="Test", time_entries=[_entry(5)])

        assert not task.is_over_budget()
        assert task.variance_percentage == 0.0

    def test_is_recurring_requires_enabled(self):
        task = Task(id="abcd1234", title="Test")
        assert not task.is_recurring()

        task.recurrence = Recurrence(type="daily", next_due="2024-03-16")
        assert task.is_recurring()

        task.recurrence.enabled = False
        assert not task.is_recurring()

    def test_optional_fields_omitted(self):
        """Empty optional references are left out of the document."""
        data = Task(id="abcd1234", title="Test").to_dict()

        assert "jira_issue" not in data
        assert "parent_id" not in data
        assert "recurrence" not in data

    def test_round_trip(self):
        task = Task(
            id="abcd1234",
            title="Test",
            description="desc",
            status="doing",
            priority="high",
            estimated_hours=3.5,
            tags=["a", "b"],
            dependencies=["ffff0000"],
            jira_issue="PROJ-1",
            parent_id="eeee0000",
            time_entries=[_entry(1)],
            recurrence=Recurrence(type="weekly", value="monday", next_due="2024-03-18"),
            created_at="2024-03-15T09:00:00Z",
            updated_at="2024-03-15T09:00:00Z",
        )

        assert Task.from_dict(task.to_dict()) == task

    def test_validate(self):
        task = Task(id="", title=" ", status="later", priority="urgent", estimated_hours=-1)
        issues = task.validate()

        assert "Task ID is required" in issues
        assert "Title is required" in issues
        assert "Invalid status: later" in issues
        assert "Invalid priority: urgent" in issues
        assert "Estimated hours must be a finite, non-negative number" in issues

    def test_validate_clean_task(self):
        assert Task(id="abcd1234", title="Test").validate() == []


class TestProject:
    """Test cases for Project containers and aggregates."""

    @pytest.fixture
    def project(self):
        return Project(
            name="demo",
            tasks=[Task(id="00000001", title="One", status="done", estimated_hours=2)],
            modules=[
                Module(
                    name="api",
                    tasks=[
                        Task(id="00000002", title="Two", estimated_hours=3, time_entries=[_entry(1)]),
                        Task(id="00000003", title="Three", status="blocked"),
                    ],
                )
            ],
            sprints=[Sprint(name="s1", start_date="2024-03-01", end_date="2024-03-14", task_ids=["00000001"])],
        )

    def test_iter_tasks_reports_locations(self, project):
        locations = {task.id: location for task, location in project.iter_tasks()}

        assert locations == {
            "00000001": PROJECT_LOCATION,
            "00000002": "module:api",
            "00000003": "module:api",
        }

    def test_find_task(self, project):
        task, location = project.find_task("00000003")

        assert task.title == "Three"
        assert location == "module:api"
        assert project.find_task("missing") is None

    def test_aggregates(self, project):
        assert project.count_by_status() == {"todo": 1, "doing": 0, "done": 1, "blocked": 1}
        assert project.total_estimated() == pytest.approx(5)
        assert project.total_actual() == pytest.approx(1)
        assert project.completion_percentage() == pytest.approx(100 / 3)

    def test_empty_project_completion(self):
        assert Project(name="empty").completion_percentage() == 0.0

    def test_round_trip(self, project):
        assert Project.from_dict(project.to_dict()) == project

    def test_lookups(self, project):
        assert project.get_module("api").name == "api"
        assert project.get_module("web") is None
        assert project.get_sprint("s1").task_ids == ["00000001"]
        assert project.get_sprint("s2") is None


class TestLocations:
    """Test cases for location tags and tracking paths."""

    def test_module_location_round_trip(self):
        assert module_location("api") == "module:api"
        assert location_module("module:api") == "api"
        assert location_module(PROJECT_LOCATION) is None

    def test_task_location_module(self):
        assert TaskLocation("demo", "module:api").module == "api"
        assert TaskLocation("demo", "project").module is None

    def test_tracking_session_path_split(self):
        """The project is everything before the first '/'."""
        session = TrackingSession(path="demo/backend", task_id="abcd1234", start="2024-03-15T09:00:00Z")
        assert session.project == "demo"
        assert session.module == "backend"

        plain = TrackingSession(path="demo", task_id="abcd1234", start="2024-03-15T09:00:00Z")
        assert plain.project == "demo"
        assert plain.module is None

    def test_tracking_data_round_trip(self):
        data = TrackingData(
            active_session=TrackingSession(path="demo", task_id="abcd1234", start="2024-03-15T09:00:00Z")
        )
        assert TrackingData.from_dict(data.to_dict()) == data
        assert TrackingData.from_dict({"active_session": None}).active_session is None


class TestTimestamps:
    """Test cases for timestamp helpers."""

    def test_isoformat_uses_utc_suffix(self):
        moment = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)
        assert isoformat(moment) == "2024-03-15T09:30:00Z"

    def test_isoformat_converts_offsets(self):
        moment = datetime(2024, 3, 15, 11, 30, tzinfo=timezone(timedelta(hours=2)))
        assert isoformat(moment) == "2024-03-15T09:30:00Z"

    def test_parse_timestamp_round_trip(self):
        moment = datetime(2024, 3, 15, 9, 30, 15, tzinfo=timezone.utc)
        assert parse_timestamp(isoformat(moment)) == moment
        assert parse_timestamp("2024-03-15T09:30:15").tzinfo is not None

    def test_dates_are_plain_days(self):
        assert date.fromisoformat(_entry(1).date) == date(2024, 3, 15)
