"""Dictionary-returning facade over the storage core.

The storage layer raises :class:`~qix.errors.QixError` subclasses. Tool
handlers want plain dictionaries instead, so every method here returns either
a result payload or an ``{"error": ..., "suggestion": ...}`` payload.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .consistency import find_orphaned_references, health_report
from .errors import (
    ConflictError,
    FlushError,
    InvalidReferenceError,
    NotFoundError,
    QixError,
    TrackingError,
    ValidationFailedError,
)
from .models import Module, Task, location_module, module_location
from .qix_logging import log_error_with_context, log_performance
from .storage import Storage
from .tracking import TimeTracker

logger = logging.getLogger("qix.service")


def task_payload(task: Task, location: Optional[str] = None, project: Optional[str] = None) -> Dict[str, Any]:
    """Task document plus its derived time figures."""
    payload = task.to_dict()
    payload.update(
        {
            "actual_hours": round(task.actual_hours, 4),
            "variance": round(task.variance, 4),
            "variance_percentage": round(task.variance_percentage, 2),
            "over_budget": task.is_over_budget(),
        }
    )
    if project is not None:
        payload["project"] = project
    if location is not None:
        payload["location"] = location
        payload["module"] = location_module(location)
    return payload


def _suggestion_for(error: QixError, default: str) -> str:
    if isinstance(error, NotFoundError):
        return "Check the names and IDs with list_projects or get_project first"
    if isinstance(error, ConflictError):
        return "Choose a different name"
    if isinstance(error, InvalidReferenceError):
        return "A task cannot reference itself"
    if isinstance(error, TrackingError):
        return "Use tracking_status to see the active session"
    if isinstance(error, ValidationFailedError):
        return "Check the input values"
    return default


class TrackerService:
    """Project/task tracker operations for the tool server."""

    def __init__(self, storage: Storage, tracker: Optional[TimeTracker] = None):
        self.storage = storage
        self.tracker = tracker or TimeTracker(storage)

    def _failure(self, error: QixError, operation: str, suggestion: str, **context: Any) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": operation, **context})
        return {
            "error": str(error),
            "error_type": type(error).__name__,
            "suggestion": _suggestion_for(error, suggestion),
            "message": f"Error: {error}",
        }

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    @log_performance("create_project")
    def create_project(self, name: str, description: str = "", tags: Optional[List[str]] = None) -> Dict[str, Any]:
        try:
            project = self.storage.create_project(name, description, tags)
        except QixError as e:
            return self._failure(e, "create_project", "Check the project name", project=name)
        return {
            "project": project.to_dict(),
            "message": f"Project '{project.name}' created",
        }

    def delete_project(self, name: str) -> Dict[str, Any]:
        try:
            self.storage.delete_project(name)
        except QixError as e:
            return self._failure(e, "delete_project", "Check the project name", project=name)
        return {"project": name, "deleted": True, "message": f"Project '{name}' deleted"}

    def list_projects(self) -> Dict[str, Any]:
        projects = []
        for project in self.storage.get_all_projects():
            counts = project.count_by_status()
            projects.append(
                {
                    "name": project.name,
                    "description": project.description,
                    "tasks": len(project.all_tasks()),
                    "done": counts["done"],
                    "completion_pct": round(project.completion_percentage(), 1),
                }
            )
        return {
            "projects": projects,
            "count": len(projects),
            "message": f"Found {len(projects)} projects" if projects else "No projects yet. Use create_project first.",
        }

    def get_project(self, name: str) -> Dict[str, Any]:
        try:
            project = self.storage.load_project(name)
            stats = self.storage.project_stats(name)
        except QixError as e:
            return self._failure(e, "get_project", "Check the project name", project=name)
        return {
            "project": name,
            "description": project.description,
            "tags": list(project.tags),
            "modules": [
                {"name": module.name, "description": module.description, "tasks": len(module.tasks)}
                for module in project.modules
            ],
            "sprints": [sprint.to_dict() for sprint in project.sprints],
            "stats": stats,
        }

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def add_module(self, project: str, name: str, description: str = "") -> Dict[str, Any]:
        try:
            module = self.storage.add_module(project, name, description)
        except QixError as e:
            return self._failure(e, "add_module", "Check the project and module names", project=project, module=name)
        return {"project": project, "module": module.to_dict(), "message": f"Module '{module.name}' added"}

    def rename_module(self, project: str, name: str, new_name: str) -> Dict[str, Any]:
        def rename(module: Module) -> Module:
            module.name = new_name.strip()
            return module

        try:
            module = self.storage.update_module(project, name, rename)
        except QixError as e:
            return self._failure(e, "rename_module", "Check the module names", project=project, module=name)
        return {"project": project, "module": module.name, "message": f"Module '{name}' renamed to '{module.name}'"}

    def remove_module(self, project: str, name: str) -> Dict[str, Any]:
        try:
            module = self.storage.remove_module(project, name)
        except QixError as e:
            return self._failure(e, "remove_module", "Check the module name", project=project, module=name)
        return {
            "project": project,
            "module": module.name,
            "removed_tasks": [task.id for task in module.tasks],
            "message": f"Module '{module.name}' removed with {len(module.tasks)} tasks",
        }

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(
        self,
        project: str,
        title: str,
        module: Optional[str] = None,
        description: str = "",
        priority: Optional[str] = None,
        estimated_hours: float = 0.0,
        tags: Optional[List[str]] = None,
        parent_id: Optional[str] = None,
        jira_issue: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            task = self.storage.add_task(
                project,
                title,
                module,
                description=description,
                priority=priority,
                estimated_hours=estimated_hours,
                tags=tags,
                parent_id=parent_id,
                jira_issue=jira_issue,
            )
            _, location = self.storage.find_task(project, task.id)
        except QixError as e:
            return self._failure(e, "add_task", "Check the project and module names", project=project, module=module)
        return {
            "task": task_payload(task, location, project),
            "message": f"Task {task.id} created",
        }

    def get_task(self, task_id: str, project: Optional[str] = None) -> Dict[str, Any]:
        """Fetch a task; without a project the task index locates it."""
        try:
            if project is None:
                project = self.storage.locate_task(task_id).project
            task, location = self.storage.find_task(project, task_id)
        except QixError as e:
            return self._failure(e, "get_task", "Check the task ID", project=project, task_id=task_id)
        return {"task": task_payload(task, location, project)}

    def list_tasks(self, project: str, status: Optional[str] = None, module: Optional[str] = None) -> Dict[str, Any]:
        try:
            if module:
                found = self.storage.get_module(project, module)
                tasks = [(task, module_location(found.name)) for task in found.tasks]
            else:
                tasks = list(self.storage.load_project(project).iter_tasks())
        except QixError as e:
            return self._failure(e, "list_tasks", "Check the project and module names", project=project)
        if status:
            tasks = [(task, location) for task, location in tasks if task.status == status]
        return {
            "project": project,
            "tasks": [task_payload(task, location) for task, location in tasks],
            "count": len(tasks),
        }

    def update_task_status(self, project: str, task_id: str, status: str) -> Dict[str, Any]:
        try:
            task = self.storage.update_task_status(project, task_id, status)
        except QixError as e:
            return self._failure(e, "update_task_status", "Use todo, doing, done or blocked", task_id=task_id)
        return {"task": task_payload(task, project=project), "message": f"Task {task_id} is now {task.status}"}

    def complete_task(self, project: str, task_id: str) -> Dict[str, Any]:
        try:
            task = self.storage.complete_task(project, task_id)
        except QixError as e:
            return self._failure(e, "complete_task", "Check the task ID", project=project, task_id=task_id)
        result = {"task": task_payload(task, project=project), "message": f"Task {task_id} completed"}
        if task.is_recurring():
            result["next_due"] = task.recurrence.next_due
        return result

    def remove_task(self, project: str, task_id: str) -> Dict[str, Any]:
        try:
            task = self.storage.remove_task(project, task_id)
        except QixError as e:
            return self._failure(e, "remove_task", "Check the task ID", project=project, task_id=task_id)
        return {"task_id": task.id, "removed": True, "message": f"Task {task.id} removed"}

    def set_recurrence(self, project: str, task_id: str, pattern: str) -> Dict[str, Any]:
        try:
            recurrence = self.storage.set_task_recurrence(project, task_id, pattern)
        except QixError as e:
            return self._failure(
                e, "set_recurrence", "Use daily, weekly:<day>, monthly:<1-31> or interval:<days>", task_id=task_id
            )
        return {
            "task_id": task_id,
            "recurrence": recurrence.to_dict(),
            "message": f"Task {task_id} recurs {recurrence.pattern}, next due {recurrence.next_due}",
        }

    def remove_recurrence(self, project: str, task_id: str) -> Dict[str, Any]:
        try:
            self.storage.remove_task_recurrence(project, task_id)
        except QixError as e:
            return self._failure(e, "remove_recurrence", "Check the task ID", task_id=task_id)
        return {"task_id": task_id, "recurrence": None, "message": f"Task {task_id} no longer recurs"}

    def link_parent(self, project: str, task_id: str, parent_id: Optional[str]) -> Dict[str, Any]:
        """Set or, with ``parent_id=None``, clear a task's parent."""
        try:
            if parent_id:
                task = self.storage.link_task_as_child(project, task_id, parent_id)
            else:
                task = self.storage.unlink_task_parent(project, task_id)
        except QixError as e:
            return self._failure(e, "link_parent", "Check both task IDs", task_id=task_id, parent_id=parent_id)
        return {"task_id": task.id, "parent_id": task.parent_id}

    def add_dependency(self, project: str, task_id: str, depends_on: str) -> Dict[str, Any]:
        try:
            task = self.storage.add_task_dependency(project, task_id, depends_on)
        except QixError as e:
            return self._failure(e, "add_dependency", "Check both task IDs", task_id=task_id, depends_on=depends_on)
        return {"task_id": task.id, "dependencies": list(task.dependencies)}

    def remove_dependency(self, project: str, task_id: str, depends_on: str) -> Dict[str, Any]:
        try:
            task = self.storage.remove_task_dependency(project, task_id, depends_on)
        except QixError as e:
            return self._failure(e, "remove_dependency", "Check both task IDs", task_id=task_id, depends_on=depends_on)
        return {"task_id": task.id, "dependencies": list(task.dependencies)}

    def recurring_due(self, project: str, on_date: Optional[str] = None) -> Dict[str, Any]:
        try:
            tasks = self.storage.recurring_tasks_due(project, on_date)
        except QixError as e:
            return self._failure(e, "recurring_due", "Check the project name", project=project)
        return {"project": project, "tasks": [task_payload(task) for task in tasks], "count": len(tasks)}

    # ------------------------------------------------------------------
    # Sprints
    # ------------------------------------------------------------------

    def add_sprint(self, project: str, name: str, start_date: str, end_date: str) -> Dict[str, Any]:
        try:
            sprint = self.storage.add_sprint(project, name, start_date, end_date)
        except QixError as e:
            return self._failure(e, "add_sprint", "Dates use YYYY-MM-DD and end must not precede start", sprint=name)
        return {"project": project, "sprint": sprint.to_dict(), "message": f"Sprint '{sprint.name}' added"}

    def assign_to_sprint(self, project: str, sprint: str, task_id: str) -> Dict[str, Any]:
        try:
            result = self.storage.assign_task_to_sprint(project, sprint, task_id)
        except QixError as e:
            return self._failure(e, "assign_to_sprint", "Check the sprint name and task ID", sprint=sprint)
        return {"sprint": result.name, "task_ids": list(result.task_ids)}

    def unassign_from_sprint(self, project: str, sprint: str, task_id: str) -> Dict[str, Any]:
        try:
            result = self.storage.unassign_task_from_sprint(project, sprint, task_id)
        except QixError as e:
            return self._failure(e, "unassign_from_sprint", "Check the sprint name and task ID", sprint=sprint)
        return {"sprint": result.name, "task_ids": list(result.task_ids)}

    def remove_sprint(self, project: str, sprint: str) -> Dict[str, Any]:
        try:
            removed = self.storage.remove_sprint(project, sprint)
        except QixError as e:
            return self._failure(e, "remove_sprint", "Check the sprint name", sprint=sprint)
        return {"sprint": removed.name, "removed": True, "message": f"Sprint '{removed.name}' removed"}

    # ------------------------------------------------------------------
    # Time tracking
    # ------------------------------------------------------------------

    def start_tracking(
        self, project: str, task_id: str, module: Optional[str] = None, switch: bool = False
    ) -> Dict[str, Any]:
        """Start a session; with ``switch`` a running session is stopped first."""
        try:
            if switch:
                session = self.tracker.switch_tracking(project, task_id, module)
            else:
                session = self.tracker.start_tracking(project, task_id, module)
        except QixError as e:
            return self._failure(e, "start_tracking", "Stop the running session or pass switch=true", task_id=task_id)
        return {"session": session.to_dict(), "message": f"Tracking task {task_id}"}

    def stop_tracking(self) -> Dict[str, Any]:
        try:
            result = self.tracker.stop_tracking()
        except QixError as e:
            return self._failure(e, "stop_tracking", "Start a session with start_tracking first")
        return {
            "path": result.path,
            "task_id": result.task_id,
            "elapsed_seconds": int(result.elapsed.total_seconds()),
            "hours": round(result.hours, 4),
            "message": f"Logged {result.hours:.2f}h on task {result.task_id}",
        }

    def tracking_status(self) -> Dict[str, Any]:
        try:
            session = self.tracker.active_session()
            if session is None:
                return {"tracking": False, "session": None}
            elapsed = self.tracker.elapsed()
        except QixError as e:
            return self._failure(e, "tracking_status", "Check the tracking file")
        return {
            "tracking": True,
            "session": session.to_dict(),
            "elapsed_seconds": int(elapsed.total_seconds()),
        }

    def log_time(self, project: str, task_id: str, hours: float, date: Optional[str] = None) -> Dict[str, Any]:
        try:
            entry = self.tracker.log_time(project, task_id, hours, date)
            task, _ = self.storage.find_task(project, task_id)
        except QixError as e:
            return self._failure(e, "log_time", "Hours must be positive and dates use YYYY-MM-DD", task_id=task_id)
        return {
            "task_id": task_id,
            "entry": entry.to_dict(),
            "actual_hours": round(task.actual_hours, 4),
            "message": f"Logged {entry.hours:g}h on task {task_id}",
        }

    def time_report(self, date: Optional[str] = None) -> Dict[str, Any]:
        day = date or self.storage.today().isoformat()
        entries = self.tracker.time_entries_for_date(day)
        return {
            "date": day,
            "projects": {name: [entry.to_dict() for entry in items] for name, items in entries.items()},
            "total_hours": round(self.tracker.total_hours_for_date(day), 4),
        }

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def health_check(self, rebuild: bool = False) -> Dict[str, Any]:
        """Run diagnostics; ``rebuild`` refreshes a stale index first."""
        try:
            rebuilt = self.storage.index.ensure_fresh() if rebuild else False
            report = health_report(self.storage)
        except QixError as e:
            return self._failure(e, "health_check", "Check the data directory")
        report["index_rebuilt"] = rebuilt
        return report

    def orphaned_references(self, project: str) -> Dict[str, Any]:
        try:
            report = find_orphaned_references(self.storage, project)
        except QixError as e:
            return self._failure(e, "orphaned_references", "Check the project name", project=project)
        return {"project": project, **report}

    def flush(self) -> Dict[str, Any]:
        try:
            saved = self.storage.flush_all()
        except FlushError as e:
            result = self._failure(e, "flush", "Check disk space and permissions of the data directory")
            result["saved"] = list(e.saved)
            result["failed"] = sorted(e.failures)
            return result
        logger.info(f"Flushed {len(saved)} projects")
        return {"saved": saved, "failed": [], "message": f"Flushed {len(saved)} projects"}

    def reload(self) -> Dict[str, Any]:
        try:
            entries = self.storage.reload_after_restore()
        except QixError as e:
            return self._failure(e, "reload", "Check the data directory")
        return {"index_entries": entries, "message": f"Reloaded; index holds {entries} tasks"}
