"""Storage context for qix projects.

:class:`Storage` is constructed once per process and handed to whatever
needs data access. Every durable change goes through
:meth:`Storage.update_project`: load, apply a mutator to a copy, save through
the codec, refresh the cache and re-index the project. No other method writes
a project file.
"""

from __future__ import annotations

import copy
import logging
import math
import secrets
import threading
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from .cache import ProjectCache
from .codec import read_document, write_document
from .config import Config, validate_project_name
from .errors import (
    CorruptedDocumentError,
    DocumentNotFoundError,
    DuplicateNameError,
    InvalidReferenceError,
    ProjectNotFoundError,
    QixModuleNotFoundError,
    QixError,
    SprintNotFoundError,
    StorageIOError,
    TaskNotFoundError,
    ValidationFailedError,
)
from .index import TaskIndex
from .models import (
    PRIORITIES,
    PRIORITY_MEDIUM,
    STATUS_DONE,
    STATUS_TODO,
    TASK_STATUSES,
    Module,
    Project,
    Recurrence,
    Sprint,
    Task,
    TaskLocation,
    TimeEntry,
    format_date,
    isoformat,
    parse_date,
)
from .qix_logging import StorageEvents, log_error_with_context, log_operation, log_performance
from . import recurrence as recurrence_rules

logger = logging.getLogger("qix.storage")

R = TypeVar("R")
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_task_id() -> str:
    """Random 8-character lowercase hex task ID."""
    return secrets.token_hex(4)


def _require_date(value: str, label: str) -> str:
    try:
        parse_date(value)
    except (TypeError, ValueError):
        raise ValidationFailedError(f"invalid {label} '{value}' (use YYYY-MM-DD)")
    return value


class Storage:
    """Project persistence, caching and indexing for one data directory.

    Args:
        config: Resolved data-directory configuration.
        clock: Source of "now"; defaults to the UTC wall clock.
        background_index: Write index snapshots on a background thread.
    """

    def __init__(self, config: Config, clock: Optional[Clock] = None, *, background_index: bool = True):
        self.config = config
        self.clock: Clock = clock or _utc_now
        self.events = StorageEvents()
        self.cache = ProjectCache()
        self._mutation_lock = threading.RLock()

        config.ensure_dirs()
        self.index = TaskIndex(
            config.index_file,
            list_projects=self.list_projects,
            load_project=self.load_project,
            project_path=config.project_path,
            background=background_index,
            events=self.events,
        )
        try:
            self.index.load()
        except DocumentNotFoundError:
            logger.debug("No index snapshot yet; it is built on first use")
        except QixError as e:
            logger.warning(f"Ignoring unreadable index snapshot: {e}")

    # ------------------------------------------------------------------
    # Time helpers
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self.clock()

    def today(self) -> date:
        return self.clock().date()

    def _timestamp(self) -> str:
        return isoformat(self.clock())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Drain the background index writer."""
        self.index.close()

    def __enter__(self) -> "Storage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Mutation API
    # ------------------------------------------------------------------

    def load_project(self, name: str) -> Project:
        """Return the cached project, reading it from disk on a miss.

        The returned object is the cached instance: treat it as read-only and
        change it through :meth:`update_project`.
        """
        cached = self.cache.get(name)
        if cached is not None:
            return cached

        path = self.config.project_path(name)
        try:
            project = read_document(path, Project.from_dict)
        except DocumentNotFoundError:
            raise ProjectNotFoundError(name)
        self.cache.put(name, project)
        return project

    @log_performance("save_project")
    def save_project(self, name: str, project: Project) -> None:
        """Persist ``project`` and bring cache and index in line with it."""
        path = self.config.project_path(name)
        try:
            write_document(path, project)
        except QixError as e:
            log_error_with_context(e, {"operation": "save_project", "project": name, "path": str(path)})
            raise

        self.cache.put(name, project)
        self.cache.clear_dirty(name)
        self.index.reindex_project(name, project)
        self.events.emit("project_saved", project=name)

    def update_project(self, name: str, mutator: Callable[[Project], R]) -> R:
        """Apply ``mutator`` to a copy of the project and persist the result.

        The mutator raises to abort; the cached and stored documents are then
        untouched. On success the copy replaces the cached document, is marked
        dirty, saved and marked clean. If the write fails the copy stays cached
        and dirty for :meth:`flush_all`. If the codec rejects the copy as
        unserializable, the previous document is put back instead. Returns
        whatever the mutator returns.
        """
        with self._mutation_lock:
            current = self.load_project(name)
            was_dirty = self.cache.is_dirty(name)
            draft = copy.deepcopy(current)
            with log_operation("update_project", project=name):
                result = mutator(draft)
                self.cache.put(name, draft)
                self.cache.mark_dirty(name)
                try:
                    self.save_project(name, draft)
                except ValidationFailedError:
                    self.cache.put(name, current)
                    if not was_dirty:
                        self.cache.clear_dirty(name)
                    raise
            return result

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def list_projects(self) -> List[str]:
        return self.config.list_project_names()

    def project_exists(self, name: str) -> bool:
        return name in self.cache or self.config.project_exists(name)

    def create_project(self, name: str, description: str = "", tags: Optional[List[str]] = None) -> Project:
        name = validate_project_name(name)
        with self._mutation_lock:
            if self.project_exists(name):
                raise DuplicateNameError("project", name)
            project = Project(
                name=name,
                description=description,
                tags=list(tags or []),
                created_at=self._timestamp(),
            )
            self.save_project(name, project)
        logger.info(f"Created project {name}")
        return project

    def delete_project(self, name: str) -> None:
        """Remove a project file, evict it from the cache and rebuild the index."""
        with self._mutation_lock:
            if not self.project_exists(name):
                raise ProjectNotFoundError(name)
            self.cache.invalidate(name)
            path = self.config.project_path(name)
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageIOError(f"failed to delete project file {path}: {e}", path) from e
            self.index.rebuild_all()
        logger.info(f"Deleted project {name}")
        self.events.emit("project_deleted", project=name)

    def get_all_projects(self) -> List[Project]:
        """Every readable project; corrupted files are skipped with a warning."""
        projects: List[Project] = []
        for name in self.list_projects():
            try:
                projects.append(self.load_project(name))
            except (CorruptedDocumentError, ProjectNotFoundError) as e:
                logger.warning(f"Skipping project '{name}': {e}")
        return projects

    def project_stats(self, name: str) -> Dict[str, Any]:
        project = self.load_project(name)
        counts = project.count_by_status()
        return {
            "total_tasks": len(project.all_tasks()),
            "todo": counts["todo"],
            "doing": counts["doing"],
            "done": counts["done"],
            "blocked": counts["blocked"],
            "total_estimated": project.total_estimated(),
            "total_actual": project.total_actual(),
            "completion_pct": project.completion_percentage(),
            "module_count": len(project.modules),
            "sprint_count": len(project.sprints),
        }

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def add_module(
        self,
        project_name: str,
        module_name: str,
        description: str = "",
        tags: Optional[List[str]] = None,
    ) -> Module:
        if not module_name or not module_name.strip():
            raise ValidationFailedError("module name cannot be empty")
        module_name = module_name.strip()
        if "/" in module_name:
            raise ValidationFailedError(f"module name '{module_name}' cannot contain '/'")

        def mutate(project: Project) -> Module:
            if project.get_module(module_name) is not None:
                raise DuplicateNameError("module", module_name, project_name)
            module = Module(
                name=module_name,
                description=description,
                tags=list(tags or []),
                created_at=self._timestamp(),
            )
            project.modules.append(module)
            return module

        return self.update_project(project_name, mutate)

    def get_module(self, project_name: str, module_name: str) -> Module:
        module = self.load_project(project_name).get_module(module_name)
        if module is None:
            raise QixModuleNotFoundError(project_name, module_name)
        return module

    def update_module(self, project_name: str, module_name: str, mutator: Callable[[Module], R]) -> R:
        """Apply ``mutator`` to one module; a rename may not collide with a sibling."""

        def mutate(project: Project) -> R:
            module = project.get_module(module_name)
            if module is None:
                raise QixModuleNotFoundError(project_name, module_name)
            result = mutator(module)
            if module.name != module_name:
                if not module.name or "/" in module.name:
                    raise ValidationFailedError(f"invalid module name '{module.name}'")
                if sum(1 for m in project.modules if m.name == module.name) > 1:
                    raise DuplicateNameError("module", module.name, project_name)
            return result

        return self.update_project(project_name, mutate)

    def remove_module(self, project_name: str, module_name: str) -> Module:
        """Remove a module together with its tasks."""

        def mutate(project: Project) -> Module:
            for i, module in enumerate(project.modules):
                if module.name == module_name:
                    return project.modules.pop(i)
            raise QixModuleNotFoundError(project_name, module_name)

        return self.update_project(project_name, mutate)

    def list_tasks_in_module(self, project_name: str, module_name: str) -> List[Task]:
        return list(self.get_module(project_name, module_name).tasks)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def find_task(self, project_name: str, task_id: str) -> Tuple[Task, str]:
        """Linear scan of one project; returns the task and its location tag."""
        found = self.load_project(project_name).find_task(task_id)
        if found is None:
            raise TaskNotFoundError(task_id, project_name)
        return found

    def locate_task(self, task_id: str) -> TaskLocation:
        """Find which project holds ``task_id``, using the index when it is right."""
        hint = self.index.lookup(task_id)
        if hint is not None:
            try:
                _, location = self.find_task(hint.project, task_id)
                return TaskLocation(project=hint.project, location=location)
            except (ProjectNotFoundError, TaskNotFoundError):
                logger.debug(f"Index entry for {task_id} is stale; scanning projects")

        for project in self.get_all_projects():
            found = project.find_task(task_id)
            if found is not None:
                return TaskLocation(project=project.name, location=found[1])
        raise TaskNotFoundError(task_id)

    def _new_task_id(self, project: Project) -> str:
        while True:
            task_id = generate_task_id()
            if task_id not in self.index and project.find_task(task_id) is None:
                return task_id

    def add_task(
        self,
        project_name: str,
        title: str,
        module_name: Optional[str] = None,
        *,
        description: str = "",
        status: Optional[str] = None,
        priority: Optional[str] = None,
        estimated_hours: float = 0.0,
        tags: Optional[List[str]] = None,
        dependencies: Optional[List[str]] = None,
        jira_issue: Optional[str] = None,
        parent_id: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> Task:
        """Create a task at project level, or inside ``module_name``.

        Status defaults to ``todo`` and priority to ``medium``. Parent and
        dependency IDs are stored as given, even if they do not resolve.
        """
        if not title or not title.strip():
            raise ValidationFailedError("task title cannot be empty")
        status = status or STATUS_TODO
        priority = priority or PRIORITY_MEDIUM
        if status not in TASK_STATUSES:
            raise ValidationFailedError(f"invalid status '{status}' (use: {', '.join(TASK_STATUSES)})")
        if priority not in PRIORITIES:
            raise ValidationFailedError(f"invalid priority '{priority}' (use: {', '.join(PRIORITIES)})")
        if not math.isfinite(estimated_hours) or estimated_hours < 0:
            raise ValidationFailedError("estimated hours must be a finite, non-negative number")

        def mutate(project: Project) -> Task:
            new_id = task_id or self._new_task_id(project)
            if project.find_task(new_id) is not None:
                raise DuplicateNameError("task", new_id, project_name)
            now = self._timestamp()
            task = Task(
                id=new_id,
                title=title.strip(),
                description=description,
                status=status,
                priority=priority,
                estimated_hours=float(estimated_hours),
                tags=list(tags or []),
                dependencies=list(dependencies or []),
                jira_issue=(jira_issue or "").strip() or None,
                parent_id=parent_id or None,
                created_at=now,
                updated_at=now,
            )
            if module_name:
                module = project.get_module(module_name)
                if module is None:
                    raise QixModuleNotFoundError(project_name, module_name)
                module.tasks.append(task)
            else:
                project.tasks.append(task)
            return task

        task = self.update_project(project_name, mutate)
        logger.info(f"Created task {task.id} in {project_name}{'/' + module_name if module_name else ''}")
        return task

    def update_task(self, project_name: str, task_id: str, mutator: Callable[[Task], R]) -> R:
        """Apply ``mutator`` to one task and stamp its ``updated_at``."""

        def mutate(project: Project) -> R:
            found = project.find_task(task_id)
            if found is None:
                raise TaskNotFoundError(task_id, project_name)
            task = found[0]
            result = mutator(task)
            issues = task.validate()
            if issues:
                raise ValidationFailedError(f"task {task_id}: {'; '.join(issues)}")
            task.updated_at = self._timestamp()
            return result

        return self.update_project(project_name, mutate)

    def update_task_status(self, project_name: str, task_id: str, status: str) -> Task:
        """Set a task's status; moving a recurring task to done advances its schedule."""
        if status not in TASK_STATUSES:
            raise ValidationFailedError(f"invalid status '{status}' (use: {', '.join(TASK_STATUSES)})")
        today = self.today()

        def mutate(task: Task) -> Task:
            previous = task.status
            task.status = status
            if status == STATUS_DONE and previous != STATUS_DONE and task.is_recurring():
                recurrence_rules.advance(task.recurrence, today)
            return task

        return self.update_task(project_name, task_id, mutate)

    def complete_task(self, project_name: str, task_id: str) -> Task:
        """Mark a task done, recording the completion on its recurrence if any."""
        today = self.today()

        def mutate(task: Task) -> Task:
            task.status = STATUS_DONE
            if task.is_recurring():
                recurrence_rules.advance(task.recurrence, today)
            return task

        return self.update_task(project_name, task_id, mutate)

    def remove_task(self, project_name: str, task_id: str) -> Task:
        """Delete a task; references to it elsewhere are left dangling."""

        def mutate(project: Project) -> Task:
            for i, task in enumerate(project.tasks):
                if task.id == task_id:
                    return project.tasks.pop(i)
            for module in project.modules:
                for i, task in enumerate(module.tasks):
                    if task.id == task_id:
                        return module.tasks.pop(i)
            raise TaskNotFoundError(task_id, project_name)

        return self.update_project(project_name, mutate)

    def add_time_entry(
        self,
        project_name: str,
        task_id: str,
        hours: float,
        entry_date: Optional[str] = None,
    ) -> TimeEntry:
        if hours is None or not math.isfinite(hours) or hours <= 0:
            raise ValidationFailedError("hours must be a finite positive number")
        entry = TimeEntry(
            date=_require_date(entry_date, "date") if entry_date else format_date(self.today()),
            hours=float(hours),
            logged_at=self._timestamp(),
        )

        def mutate(task: Task) -> TimeEntry:
            task.time_entries.append(entry)
            return entry

        return self.update_task(project_name, task_id, mutate)

    def set_task_recurrence(self, project_name: str, task_id: str, pattern: str | Recurrence) -> Recurrence:
        recurrence = pattern if isinstance(pattern, Recurrence) else recurrence_rules.parse_pattern(pattern, self.today())

        def mutate(task: Task) -> Recurrence:
            task.recurrence = copy.deepcopy(recurrence)
            return task.recurrence

        return self.update_task(project_name, task_id, mutate)

    def remove_task_recurrence(self, project_name: str, task_id: str) -> None:
        def mutate(task: Task) -> None:
            task.recurrence = None

        self.update_task(project_name, task_id, mutate)

    def link_task_as_child(self, project_name: str, child_id: str, parent_id: str) -> Task:
        if child_id == parent_id:
            raise InvalidReferenceError("task cannot be its own parent", child_id)
        self.find_task(project_name, parent_id)

        def mutate(task: Task) -> Task:
            task.parent_id = parent_id
            return task

        return self.update_task(project_name, child_id, mutate)

    def unlink_task_parent(self, project_name: str, task_id: str) -> Task:
        def mutate(task: Task) -> Task:
            task.parent_id = None
            return task

        return self.update_task(project_name, task_id, mutate)

    def add_task_dependency(self, project_name: str, task_id: str, depends_on_id: str) -> Task:
        """Record that ``task_id`` depends on ``depends_on_id``.

        Only self-dependency is rejected; longer cycles are accepted.
        """
        if task_id == depends_on_id:
            raise InvalidReferenceError("task cannot depend on itself", task_id)
        self.find_task(project_name, depends_on_id)

        def mutate(task: Task) -> Task:
            if depends_on_id not in task.dependencies:
                task.dependencies.append(depends_on_id)
            return task

        return self.update_task(project_name, task_id, mutate)

    def remove_task_dependency(self, project_name: str, task_id: str, depends_on_id: str) -> Task:
        def mutate(task: Task) -> Task:
            if depends_on_id not in task.dependencies:
                raise ValidationFailedError(f"task {task_id} does not depend on {depends_on_id}")
            task.dependencies.remove(depends_on_id)
            return task

        return self.update_task(project_name, task_id, mutate)

    def tasks_by_status(self, project_name: str, status: str) -> List[Task]:
        return [task for task in self.load_project(project_name).all_tasks() if task.status == status]

    def recurring_tasks_due(self, project_name: str, on_date: Optional[str] = None) -> List[Task]:
        """Recurring tasks whose next due date is on or before ``on_date`` (default today)."""
        cutoff = on_date or format_date(self.today())
        return [
            task
            for task in self.load_project(project_name).all_tasks()
            if task.is_recurring() and task.recurrence.next_due <= cutoff
        ]

    def child_tasks(self, project_name: str, parent_id: str) -> List[Task]:
        return [task for task in self.load_project(project_name).all_tasks() if task.parent_id == parent_id]

    def dependent_tasks(self, project_name: str, task_id: str) -> List[Task]:
        return [task for task in self.load_project(project_name).all_tasks() if task_id in task.dependencies]

    # ------------------------------------------------------------------
    # Sprints
    # ------------------------------------------------------------------

    def add_sprint(self, project_name: str, sprint_name: str, start_date: str, end_date: str) -> Sprint:
        if not sprint_name or not sprint_name.strip():
            raise ValidationFailedError("sprint name cannot be empty")
        sprint_name = sprint_name.strip()
        _require_date(start_date, "start date")
        _require_date(end_date, "end date")
        if parse_date(end_date) < parse_date(start_date):
            raise ValidationFailedError("sprint end date must not be before its start date")

        def mutate(project: Project) -> Sprint:
            if project.get_sprint(sprint_name) is not None:
                raise DuplicateNameError("sprint", sprint_name, project_name)
            sprint = Sprint(
                name=sprint_name,
                start_date=start_date,
                end_date=end_date,
                created_at=self._timestamp(),
            )
            project.sprints.append(sprint)
            return sprint

        return self.update_project(project_name, mutate)

    def get_sprint(self, project_name: str, sprint_name: str) -> Sprint:
        sprint = self.load_project(project_name).get_sprint(sprint_name)
        if sprint is None:
            raise SprintNotFoundError(project_name, sprint_name)
        return sprint

    def assign_task_to_sprint(self, project_name: str, sprint_name: str, task_id: str) -> Sprint:
        """Add ``task_id`` to a sprint; assigning twice is a no-op."""

        def mutate(project: Project) -> Sprint:
            sprint = project.get_sprint(sprint_name)
            if sprint is None:
                raise SprintNotFoundError(project_name, sprint_name)
            if project.find_task(task_id) is None:
                raise TaskNotFoundError(task_id, project_name)
            if task_id not in sprint.task_ids:
                sprint.task_ids.append(task_id)
            return sprint

        return self.update_project(project_name, mutate)

    def unassign_task_from_sprint(self, project_name: str, sprint_name: str, task_id: str) -> Sprint:
        def mutate(project: Project) -> Sprint:
            sprint = project.get_sprint(sprint_name)
            if sprint is None:
                raise SprintNotFoundError(project_name, sprint_name)
            if task_id not in sprint.task_ids:
                raise ValidationFailedError(f"task {task_id} is not assigned to sprint '{sprint_name}'")
            sprint.task_ids.remove(task_id)
            return sprint

        return self.update_project(project_name, mutate)

    def remove_sprint(self, project_name: str, sprint_name: str) -> Sprint:
        """Remove a sprint; the tasks it referenced are not touched."""

        def mutate(project: Project) -> Sprint:
            for i, sprint in enumerate(project.sprints):
                if sprint.name == sprint_name:
                    return project.sprints.pop(i)
            raise SprintNotFoundError(project_name, sprint_name)

        return self.update_project(project_name, mutate)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def flush_all(self) -> List[str]:
        """Save every dirty project; see :meth:`ProjectCache.flush_all`."""
        with self._mutation_lock:
            return self.cache.flush_all(self.save_project)

    def clear_cache(self) -> None:
        self.cache.clear()

    def reload_after_restore(self) -> int:
        """Forget everything cached and rebuild the index from disk."""
        self.clear_cache()
        return self.index.rebuild_all()

    def cache_stats(self) -> Dict[str, int]:
        stats = self.cache.stats()
        stats["index_entries"] = len(self.index)
        return stats
