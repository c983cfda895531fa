"""MCP server exposing the qix project/task tracker as tools."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from qix import Config, Storage, TrackerService
from qix.qix_logging import setup_logging

logger = logging.getLogger("qix.server")


def create_server(service: TrackerService) -> FastMCP:
    """Build a FastMCP server whose tools call into ``service``."""
    server = FastMCP("qix")

    # ------------------------------------------------------------------
    # Projects and modules
    # ------------------------------------------------------------------

    @server.tool()
    def create_project(name: str, description: str = "", tags: Optional[List[str]] = None) -> Dict[str, Any]:
        """Create a new project. Project names double as file names and cannot contain '/'."""
        return service.create_project(name, description, tags)

    @server.tool()
    def delete_project(name: str) -> Dict[str, Any]:
        """Delete a project and all of its modules, tasks and sprints."""
        return service.delete_project(name)

    @server.tool()
    def list_projects() -> Dict[str, Any]:
        """List every project with task counts and completion percentage."""
        return service.list_projects()

    @server.tool()
    def get_project(name: str) -> Dict[str, Any]:
        """Show a project's modules, sprints and statistics."""
        return service.get_project(name)

    @server.tool()
    def add_module(project: str, name: str, description: str = "") -> Dict[str, Any]:
        """Add a module (named group of tasks) to a project."""
        return service.add_module(project, name, description)

    @server.tool()
    def rename_module(project: str, name: str, new_name: str) -> Dict[str, Any]:
        """Rename a module; its tasks keep their IDs."""
        return service.rename_module(project, name, new_name)

    @server.tool()
    def remove_module(project: str, name: str) -> Dict[str, Any]:
        """Remove a module together with its tasks."""
        return service.remove_module(project, name)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @server.tool()
    def add_task(
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
        """Create a task at project level or inside a module.
        Status starts as 'todo'; priority defaults to 'medium'."""
        return service.add_task(
            project,
            title,
            module=module,
            description=description,
            priority=priority,
            estimated_hours=estimated_hours,
            tags=tags,
            parent_id=parent_id,
            jira_issue=jira_issue,
        )

    @server.tool()
    def get_task(task_id: str, project: Optional[str] = None) -> Dict[str, Any]:
        """Fetch a task by ID. The project is looked up when omitted."""
        return service.get_task(task_id, project)

    @server.tool()
    def list_tasks(project: str, status: Optional[str] = None, module: Optional[str] = None) -> Dict[str, Any]:
        """List a project's tasks, optionally filtered by status or module."""
        return service.list_tasks(project, status, module)

    @server.tool()
    def update_task_status(project: str, task_id: str, status: str) -> Dict[str, Any]:
        """Set a task's status to todo, doing, done or blocked."""
        return service.update_task_status(project, task_id, status)

    @server.tool()
    def complete_task(project: str, task_id: str) -> Dict[str, Any]:
        """Mark a task done. Recurring tasks get their next due date scheduled."""
        return service.complete_task(project, task_id)

    @server.tool()
    def remove_task(project: str, task_id: str) -> Dict[str, Any]:
        """Delete a task."""
        return service.remove_task(project, task_id)

    @server.tool()
    def set_recurrence(project: str, task_id: str, pattern: Optional[str] = None) -> Dict[str, Any]:
        """Make a task recur: daily, weekly:<day>, monthly:<1-31> or interval:<days>.
        Omit the pattern to stop the task recurring."""
        if not pattern:
            return service.remove_recurrence(project, task_id)
        return service.set_recurrence(project, task_id, pattern)

    @server.tool()
    def recurring_due(project: str, date: Optional[str] = None) -> Dict[str, Any]:
        """Recurring tasks due on or before a date (YYYY-MM-DD, default today)."""
        return service.recurring_due(project, date)

    @server.tool()
    def link_parent(project: str, task_id: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        """Make a task the child of another task, or clear its parent when parent_id is omitted."""
        return service.link_parent(project, task_id, parent_id)

    @server.tool()
    def manage_dependency(project: str, task_id: str, depends_on: str, action: str = "add") -> Dict[str, Any]:
        """Add or remove a dependency between two tasks of the same project."""
        if action == "remove":
            return service.remove_dependency(project, task_id, depends_on)
        if action != "add":
            return {"error": f"Unknown action '{action}'", "suggestion": "Use 'add' or 'remove'"}
        return service.add_dependency(project, task_id, depends_on)

    # ------------------------------------------------------------------
    # Sprints
    # ------------------------------------------------------------------

    @server.tool()
    def add_sprint(project: str, name: str, start_date: str, end_date: str) -> Dict[str, Any]:
        """Create a sprint; dates use YYYY-MM-DD and the end may not precede the start."""
        return service.add_sprint(project, name, start_date, end_date)

    @server.tool()
    def manage_sprint_task(project: str, sprint: str, task_id: str, action: str = "assign") -> Dict[str, Any]:
        """Assign a task to a sprint or unassign it."""
        if action == "unassign":
            return service.unassign_from_sprint(project, sprint, task_id)
        if action != "assign":
            return {"error": f"Unknown action '{action}'", "suggestion": "Use 'assign' or 'unassign'"}
        return service.assign_to_sprint(project, sprint, task_id)

    @server.tool()
    def remove_sprint(project: str, sprint: str) -> Dict[str, Any]:
        """Remove a sprint. Its tasks are not touched."""
        return service.remove_sprint(project, sprint)

    # ------------------------------------------------------------------
    # Time tracking
    # ------------------------------------------------------------------

    @server.tool()
    def start_tracking(
        project: str, task_id: str, module: Optional[str] = None, switch: bool = False
    ) -> Dict[str, Any]:
        """Start timing work on a task. Pass switch=true to stop a running session first."""
        return service.start_tracking(project, task_id, module, switch)

    @server.tool()
    def stop_tracking() -> Dict[str, Any]:
        """Stop the running session and log the elapsed time on its task."""
        return service.stop_tracking()

    @server.tool()
    def tracking_status() -> Dict[str, Any]:
        """Show the running session, if any, and its elapsed time."""
        return service.tracking_status()

    @server.tool()
    def log_time(project: str, task_id: str, hours: float, date: Optional[str] = None) -> Dict[str, Any]:
        """Log hours against a task manually (date defaults to today)."""
        return service.log_time(project, task_id, hours, date)

    @server.tool()
    def time_report(date: Optional[str] = None) -> Dict[str, Any]:
        """Hours logged on a day across all projects."""
        return service.time_report(date)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @server.tool()
    def health_check(rebuild: bool = False) -> Dict[str, Any]:
        """Report index staleness, index errors, dangling references and cache statistics."""
        return service.health_check(rebuild)

    @server.tool()
    def orphaned_references(project: str) -> Dict[str, Any]:
        """List parent, dependency and sprint references that point at missing tasks."""
        return service.orphaned_references(project)

    @server.tool()
    def flush() -> Dict[str, Any]:
        """Write every project with unsaved changes to disk (run before backups)."""
        return service.flush()

    @server.tool()
    def reload() -> Dict[str, Any]:
        """Drop cached projects and rebuild the task index (run after restores)."""
        return service.reload()

    return server


def main() -> None:
    config = Config.load()
    setup_logging(config.log_level, config.log_file)
    storage = Storage(config)
    try:
        storage.index.ensure_fresh()
        server = create_server(TrackerService(storage))
        logger.info(f"Serving qix data from {config.base_dir}")
        server.run(transport="stdio")
    finally:
        storage.close()


if __name__ == "__main__":
    main()
