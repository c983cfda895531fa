"""Time tracking: the single active session and queries over logged time.

The active session lives in ``tracking.json`` next to the project files and is
written through the same atomic codec. Stopping a session converts the elapsed
wall time into a :class:`~qix.models.TimeEntry` on the tracked task.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from .codec import read_document, write_document
from .errors import (
    DocumentNotFoundError,
    ProjectNotFoundError,
    TaskNotFoundError,
    TrackingError,
    ValidationFailedError,
)
from .models import TimeEntry, TrackingData, TrackingSession, format_date, isoformat, parse_timestamp
from .storage import Storage

logger = logging.getLogger("qix.tracking")


@dataclass(slots=True)
class StopResult:
    """Outcome of stopping a session."""

    elapsed: timedelta
    path: str
    task_id: str
    hours: float
    entry: Optional[TimeEntry] = None


def session_path(project: str, module: Optional[str] = None) -> str:
    return f"{project}/{module}" if module else project


class TimeTracker:
    """Start, stop and query time-tracking sessions against a :class:`Storage`."""

    def __init__(self, storage: Storage):
        self.storage = storage
        self.path = storage.config.tracking_file

    def load_data(self) -> TrackingData:
        try:
            return read_document(self.path, TrackingData.from_dict)
        except DocumentNotFoundError:
            return TrackingData()

    def save_data(self, data: TrackingData) -> None:
        write_document(self.path, data)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def active_session(self) -> Optional[TrackingSession]:
        return self.load_data().active_session

    def is_tracking(self) -> bool:
        return self.active_session() is not None

    def elapsed(self) -> timedelta:
        session = self.active_session()
        if session is None:
            raise TrackingError("no active tracking session")
        return self.storage.now() - parse_timestamp(session.start)

    def start_tracking(self, project: str, task_id: str, module: Optional[str] = None) -> TrackingSession:
        """Open a session on a task; fails if one is already running."""
        self.storage.find_task(project, task_id)

        data = self.load_data()
        if data.active_session is not None:
            raise TrackingError(f"active session already exists for task {data.active_session.task_id}")

        session = TrackingSession(
            path=session_path(project, module),
            task_id=task_id,
            start=isoformat(self.storage.now()),
        )
        data.active_session = session
        self.save_data(data)

        logger.info(f"Started tracking task {task_id} in {session.path}")
        self.storage.events.emit("tracking_started", path=session.path, task_id=task_id)
        return session

    def stop_tracking(self) -> StopResult:
        """Close the active session and log its elapsed time on the task.

        The session is cleared only after the time entry has been saved, so a
        failed save leaves the session running. If the tracked task or project
        no longer exists the session is discarded without an entry.
        """
        data = self.load_data()
        session = data.active_session
        if session is None:
            raise TrackingError("no active tracking session")

        now = self.storage.now()
        elapsed = now - parse_timestamp(session.start)
        hours = elapsed.total_seconds() / 3600

        entry = None
        if hours > 0:
            try:
                entry = self.storage.add_time_entry(session.project, session.task_id, hours, format_date(now.date()))
            except (TaskNotFoundError, ProjectNotFoundError) as e:
                logger.warning(f"Discarding {hours:.2f}h tracked on task {session.task_id}: {e}")

        data.active_session = None
        self.save_data(data)

        logger.info(f"Stopped tracking task {session.task_id}: {hours:.2f}h")
        self.storage.events.emit("tracking_stopped", path=session.path, task_id=session.task_id, hours=hours)
        return StopResult(elapsed=elapsed, path=session.path, task_id=session.task_id, hours=hours, entry=entry)

    def switch_tracking(self, project: str, task_id: str, module: Optional[str] = None) -> TrackingSession:
        """Stop the running session, if any, then start a new one."""
        if self.is_tracking():
            self.stop_tracking()
        return self.start_tracking(project, task_id, module)

    def log_time(self, project: str, task_id: str, hours: float, entry_date: Optional[str] = None) -> TimeEntry:
        """Add a manual time entry without touching the active session."""
        if hours is None or not math.isfinite(hours) or hours <= 0:
            raise ValidationFailedError("hours must be a finite positive number")
        return self.storage.add_time_entry(project, task_id, hours, entry_date)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def time_entries_for_date(self, day: str) -> Dict[str, List[TimeEntry]]:
        """Entries logged on ``day``, grouped by project; projects without any are omitted."""
        by_project: Dict[str, List[TimeEntry]] = {}
        for project in self.storage.get_all_projects():
            entries = [entry for task in project.all_tasks() for entry in task.time_entries if entry.date == day]
            if entries:
                by_project[project.name] = entries
        return by_project

    def time_entries_in_range(self, project: str, start_date: str, end_date: str) -> List[TimeEntry]:
        """Entries of one project dated within ``[start_date, end_date]``."""
        return [
            entry
            for task in self.storage.load_project(project).all_tasks()
            for entry in task.time_entries
            if start_date <= entry.date <= end_date
        ]

    def total_hours_for_date(self, day: str) -> float:
        return sum(entry.hours for entries in self.time_entries_for_date(day).values() for entry in entries)
