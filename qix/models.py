"""Data models for qix projects.

A Project is the unit of persistence: one JSON document per project, holding
its modules, project-level tasks and sprints. Timestamps are stored as ISO
8601 strings in UTC and calendar dates as ``YYYY-MM-DD`` strings, so a
document read back from disk compares equal to the one that was written.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

STATUS_TODO = "todo"
STATUS_DOING = "doing"
STATUS_DONE = "done"
STATUS_BLOCKED = "blocked"
TASK_STATUSES = (STATUS_TODO, STATUS_DOING, STATUS_DONE, STATUS_BLOCKED)

PRIORITY_LOW = "low"
PRIORITY_MEDIUM = "medium"
PRIORITY_HIGH = "high"
PRIORITIES = (PRIORITY_LOW, PRIORITY_MEDIUM, PRIORITY_HIGH)

RECUR_DAILY = "daily"
RECUR_WEEKLY = "weekly"
RECUR_MONTHLY = "monthly"
RECUR_INTERVAL = "interval"
RECURRENCE_TYPES = (RECUR_DAILY, RECUR_WEEKLY, RECUR_MONTHLY, RECUR_INTERVAL)

PROJECT_LOCATION = "project"
MODULE_LOCATION_PREFIX = "module:"

DATE_FORMAT = "%Y-%m-%d"


def module_location(module_name: str) -> str:
    return f"{MODULE_LOCATION_PREFIX}{module_name}"


def location_module(location: str) -> Optional[str]:
    """Return the module name encoded in a location tag, or None for project level."""
    if location.startswith(MODULE_LOCATION_PREFIX):
        return location[len(MODULE_LOCATION_PREFIX):]
    return None


def isoformat(moment: datetime) -> str:
    """Render an instant as a UTC ISO 8601 string with a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by :func:`isoformat`."""
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def format_date(day: date) -> str:
    return day.strftime(DATE_FORMAT)


def parse_date(value: str) -> date:
    return datetime.strptime(value, DATE_FORMAT).date()


@dataclass(slots=True)
class TimeEntry:
    """Hours logged against a task on a calendar day."""

    date: str
    hours: float
    logged_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "date": self.date,
            "hours": self.hours,
            "logged_at": self.logged_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeEntry":
        """Create from dictionary representation."""
        return cls(
            date=data["date"],
            hours=float(data["hours"]),
            logged_at=data.get("logged_at", ""),
        )


@dataclass(slots=True)
class Recurrence:
    """Schedule that re-arms a task each time it is completed.

    ``value`` holds the type-specific parameter: a weekday name for weekly,
    a day of month (1-31) for monthly, a number of days for interval, and
    is empty for daily.
    """

    type: str
    value: str = ""
    next_due: str = ""
    last_completed: Optional[str] = None
    enabled: bool = True

    @property
    def pattern(self) -> str:
        return f"{self.type}:{self.value}" if self.value else self.type

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "type": self.type,
            "value": self.value,
            "next_due": self.next_due,
        }
        if self.last_completed:
            data["last_completed"] = self.last_completed
        data["enabled"] = self.enabled
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recurrence":
        """Create from dictionary representation."""
        return cls(
            type=data["type"],
            value=data.get("value", ""),
            next_due=data.get("next_due", ""),
            last_completed=data.get("last_completed") or None,
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(slots=True)
class Task:
    """A work item living in exactly one container of its project."""

    id: str
    title: str
    description: str = ""
    status: str = STATUS_TODO
    priority: str = PRIORITY_MEDIUM
    estimated_hours: float = 0.0
    tags: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    jira_issue: Optional[str] = None
    parent_id: Optional[str] = None
    time_entries: List[TimeEntry] = field(default_factory=list)
    recurrence: Optional[Recurrence] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def actual_hours(self) -> float:
        """Sum of the logged time entries, recomputed on every read."""
        return sum(entry.hours for entry in self.time_entries)

    @property
    def variance(self) -> float:
        return self.actual_hours - self.estimated_hours

    @property
    def variance_percentage(self) -> float:
        if self.estimated_hours == 0:
            return 0.0
        return (self.variance / self.estimated_hours) * 100

    def is_over_budget(self) -> bool:
        if self.estimated_hours == 0:
            return False
        return self.actual_hours > self.estimated_hours

    def is_recurring(self) -> bool:
        return self.recurrence is not None and self.recurrence.enabled

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "estimated_hours": self.estimated_hours,
            "tags": list(self.tags),
            "dependencies": list(self.dependencies),
        }
        if self.jira_issue:
            data["jira_issue"] = self.jira_issue
        if self.parent_id:
            data["parent_id"] = self.parent_id
        data["time_entries"] = [entry.to_dict() for entry in self.time_entries]
        if self.recurrence is not None:
            data["recurrence"] = self.recurrence.to_dict()
        data["created_at"] = self.created_at
        data["updated_at"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        recurrence = data.get("recurrence")
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            status=data.get("status") or STATUS_TODO,
            priority=data.get("priority") or PRIORITY_MEDIUM,
            estimated_hours=float(data.get("estimated_hours") or 0.0),
            tags=list(data.get("tags") or []),
            dependencies=list(data.get("dependencies") or []),
            jira_issue=data.get("jira_issue") or None,
            parent_id=data.get("parent_id") or None,
            time_entries=[TimeEntry.from_dict(entry) for entry in data.get("time_entries") or []],
            recurrence=Recurrence.from_dict(recurrence) if recurrence else None,
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    def validate(self) -> List[str]:
        """Validate task data and return any issues."""
        issues = []

        if not self.id:
            issues.append("Task ID is required")
        if not self.title or not self.title.strip():
            issues.append("Title is required")
        if self.status not in TASK_STATUSES:
            issues.append(f"Invalid status: {self.status}")
        if self.priority not in PRIORITIES:
            issues.append(f"Invalid priority: {self.priority}")
        if not math.isfinite(self.estimated_hours) or self.estimated_hours < 0:
            issues.append("Estimated hours must be a finite, non-negative number")
        if any(not math.isfinite(entry.hours) or entry.hours <= 0 for entry in self.time_entries):
            issues.append("Time entries must have finite positive hours")

        return issues


@dataclass(slots=True)
class Module:
    """Named group of tasks inside a project."""

    name: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "tasks": [task.to_dict() for task in self.tasks],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Module":
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            tags=list(data.get("tags") or []),
            tasks=[Task.from_dict(task) for task in data.get("tasks") or []],
            created_at=data.get("created_at", ""),
        )


@dataclass(slots=True)
class Sprint:
    """Time-boxed set of task references; membership is by ID only."""

    name: str
    start_date: str
    end_date: str
    task_ids: List[str] = field(default_factory=list)
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "task_ids": list(self.task_ids),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sprint":
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            start_date=data["start_date"],
            end_date=data["end_date"],
            task_ids=list(data.get("task_ids") or []),
            created_at=data.get("created_at", ""),
        )


@dataclass(slots=True)
class Project:
    """Top-level container for modules, tasks and sprints."""

    name: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    modules: List[Module] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    sprints: List[Sprint] = field(default_factory=list)
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "modules": [module.to_dict() for module in self.modules],
            "tasks": [task.to_dict() for task in self.tasks],
            "sprints": [sprint.to_dict() for sprint in self.sprints],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            tags=list(data.get("tags") or []),
            modules=[Module.from_dict(module) for module in data.get("modules") or []],
            tasks=[Task.from_dict(task) for task in data.get("tasks") or []],
            sprints=[Sprint.from_dict(sprint) for sprint in data.get("sprints") or []],
            created_at=data.get("created_at", ""),
        )

    def iter_tasks(self) -> Iterator[Tuple[Task, str]]:
        """Yield every task with its location tag, project level first."""
        for task in self.tasks:
            yield task, PROJECT_LOCATION
        for module in self.modules:
            location = module_location(module.name)
            for task in module.tasks:
                yield task, location

    def all_tasks(self) -> List[Task]:
        return [task for task, _ in self.iter_tasks()]

    def find_task(self, task_id: str) -> Optional[Tuple[Task, str]]:
        for task, location in self.iter_tasks():
            if task.id == task_id:
                return task, location
        return None

    def get_module(self, name: str) -> Optional[Module]:
        for module in self.modules:
            if module.name == name:
                return module
        return None

    def get_sprint(self, name: str) -> Optional[Sprint]:
        for sprint in self.sprints:
            if sprint.name == name:
                return sprint
        return None

    def count_by_status(self) -> Dict[str, int]:
        counts = {status: 0 for status in TASK_STATUSES}
        for task in self.all_tasks():
            counts[task.status] = counts.get(task.status, 0) + 1
        return counts

    def total_estimated(self) -> float:
        return sum(task.estimated_hours for task in self.all_tasks())

    def total_actual(self) -> float:
        return sum(task.actual_hours for task in self.all_tasks())

    def completion_percentage(self) -> float:
        tasks = self.all_tasks()
        if not tasks:
            return 0.0
        done = sum(1 for task in tasks if task.status == STATUS_DONE)
        return (done / len(tasks)) * 100


@dataclass(slots=True)
class TaskLocation:
    """Where a task lives: its project and a ``project`` / ``module:<name>`` tag."""

    project: str
    location: str

    @property
    def module(self) -> Optional[str]:
        return location_module(self.location)

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary representation."""
        return {"project": self.project, "location": self.location}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskLocation":
        """Create from dictionary representation."""
        return cls(project=data["project"], location=data["location"])


@dataclass(slots=True)
class TrackingSession:
    """The single active time-tracking session."""

    path: str
    task_id: str
    start: str

    @property
    def project(self) -> str:
        return self.path.split("/", 1)[0]

    @property
    def module(self) -> Optional[str]:
        parts = self.path.split("/", 1)
        return parts[1] if len(parts) > 1 and parts[1] else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"path": self.path, "task_id": self.task_id, "start": self.start}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackingSession":
        """Create from dictionary representation."""
        return cls(path=data["path"], task_id=data["task_id"], start=data["start"])


@dataclass(slots=True)
class TrackingData:
    """Contents of ``tracking.json``."""

    active_session: Optional[TrackingSession] = None
    sessions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "active_session": self.active_session.to_dict() if self.active_session else None,
            "sessions": list(self.sessions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackingData":
        """Create from dictionary representation."""
        active = data.get("active_session")
        return cls(
            active_session=TrackingSession.from_dict(active) if active else None,
            sessions=list(data.get("sessions") or []),
        )
