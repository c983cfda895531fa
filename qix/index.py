"""Task index: task ID -> (project, location).

The index is a convenience cache, never the source of truth. It is rebuilt
from the project documents whenever its on-disk snapshot looks stale, and
updated per project after every save. Snapshot writes after a save happen on
a background thread; the in-memory map is consistent as soon as
:meth:`TaskIndex.reindex_project` returns.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .codec import read_json, write_json
from .errors import CorruptedDocumentError, NotFoundError, QixError
from .locking import ReadWriteLock
from .models import PROJECT_LOCATION, Project, TaskLocation
from .qix_logging import StorageEvents, log_performance

logger = logging.getLogger("qix.index")


class SnapshotWriter:
    """Single-slot background writer for the index snapshot.

    ``request()`` only raises a flag; the worker thread takes a fresh
    snapshot when it gets to run, so the newest state always wins and
    rapid successive saves collapse into one write.
    """

    def __init__(self, path: Path, snapshot: Callable[[], Dict[str, Dict[str, str]]], persist_lock: threading.Lock):
        self.path = Path(path)
        self._snapshot = snapshot
        self._persist_lock = persist_lock
        self._cond = threading.Condition()
        self._pending = False
        self._busy = False
        self._closed = False
        self._thread: Optional[threading.Thread] = None
        self.last_error: Optional[Exception] = None
        self.writes = 0

    def request(self) -> bool:
        """Schedule a snapshot write; returns False once the writer is closed."""
        with self._cond:
            if self._closed:
                return False
            self._pending = True
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="qix-index-writer", daemon=True)
                self._thread.start()
            self._cond.notify_all()
        return True

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._pending and not self._closed:
                    self._cond.wait()
                if not self._pending:
                    return
                self._pending = False
                self._busy = True
            try:
                with self._persist_lock:
                    write_json(self.path, self._snapshot(), sort_keys=True)
                self.last_error = None
                self.writes += 1
            except QixError as e:
                # A lost snapshot is recovered by staleness detection.
                self.last_error = e
                logger.warning(f"Background index snapshot failed: {e}")
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no snapshot write is pending or running."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._pending and not self._busy, timeout)

    def close(self, timeout: Optional[float] = None) -> None:
        """Finish any pending write and stop the worker thread."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
            thread = self._thread
        if thread is not None:
            thread.join(timeout)


class TaskIndex:
    """Derived map from task ID to :class:`TaskLocation`.

    Args:
        index_file: Location of the JSON snapshot.
        list_projects: Returns the names of the projects on disk.
        load_project: Loads a project by name (cache aware).
        project_path: Maps a project name to its file, for staleness checks.
        background: When False, snapshots after ``reindex_project`` are
            written synchronously.
    """

    def __init__(
        self,
        index_file: Path,
        list_projects: Callable[[], List[str]],
        load_project: Callable[[str], Project],
        project_path: Callable[[str], Path],
        *,
        background: bool = True,
        events: Optional[StorageEvents] = None,
    ):
        self.index_file = Path(index_file)
        self._list_projects = list_projects
        self._load_project = load_project
        self._project_path = project_path
        self._events = events
        self._lock = ReadWriteLock()
        self._entries: Dict[str, TaskLocation] = {}
        self._persist_lock = threading.Lock()
        self._background = background
        self._writer = SnapshotWriter(self.index_file, self.snapshot, self._persist_lock)

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Dict[str, str]]:
        """Copy of the index in its on-disk JSON shape."""
        with self._lock.read():
            return {task_id: loc.to_dict() for task_id, loc in self._entries.items()}

    def load(self) -> None:
        """Replace the in-memory index with the snapshot on disk.

        A missing or corrupted snapshot leaves the index empty and re-raises,
        so the caller can decide to rebuild.
        """
        try:
            data = read_json(self.index_file)
            if not isinstance(data, dict):
                raise CorruptedDocumentError(self.index_file, "expected a JSON object")
            try:
                entries = {task_id: TaskLocation.from_dict(loc) for task_id, loc in data.items()}
            except (KeyError, TypeError, AttributeError) as e:
                raise CorruptedDocumentError(self.index_file, f"schema mismatch: {e}") from e
        except QixError:
            with self._lock.write():
                self._entries = {}
            raise
        with self._lock.write():
            self._entries = entries
        logger.debug(f"Loaded {len(entries)} index entries from {self.index_file}")

    def save(self) -> None:
        """Write the snapshot synchronously."""
        with self._persist_lock:
            write_json(self.index_file, self.snapshot(), sort_keys=True)

    def wait_for_snapshot(self, timeout: Optional[float] = None) -> bool:
        return self._writer.wait_idle(timeout)

    @property
    def last_snapshot_error(self) -> Optional[Exception]:
        return self._writer.last_error

    def close(self, timeout: Optional[float] = None) -> None:
        self._writer.close(timeout)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @staticmethod
    def _entries_for(name: str, project: Project) -> Dict[str, TaskLocation]:
        return {task.id: TaskLocation(project=name, location=location) for task, location in project.iter_tasks()}

    @log_performance("rebuild_index")
    def rebuild_all(self) -> int:
        """Recompute the whole index from the projects on disk and persist it.

        Projects that cannot be loaded are skipped with a warning.
        """
        fresh: Dict[str, TaskLocation] = {}
        for name in self._list_projects():
            try:
                project = self._load_project(name)
            except (CorruptedDocumentError, NotFoundError) as e:
                logger.warning(f"Skipping project '{name}' while rebuilding index: {e}")
                continue
            fresh.update(self._entries_for(name, project))

        with self._lock.write():
            self._entries = fresh
        self._writer.wait_idle()
        self.save()

        logger.info(f"Rebuilt task index with {len(fresh)} entries")
        if self._events is not None:
            self._events.emit("index_rebuilt", entries=len(fresh))
        return len(fresh)

    def reindex_project(self, name: str, project: Project) -> None:
        """Replace every entry of ``name`` with the tasks currently in ``project``."""
        entries = self._entries_for(name, project)
        with self._lock.write():
            for task_id in [tid for tid, loc in self._entries.items() if loc.project == name]:
                del self._entries[task_id]
            self._entries.update(entries)
        self._schedule_snapshot()

    def remove_project(self, name: str) -> None:
        with self._lock.write():
            for task_id in [tid for tid, loc in self._entries.items() if loc.project == name]:
                del self._entries[task_id]
        self._schedule_snapshot()

    def _schedule_snapshot(self) -> None:
        if not (self._background and self._writer.request()):
            self.save()

    def is_stale(self) -> bool:
        """True if the snapshot is missing or older than any project file.

        Relies on filesystem modification times, so two writes within the
        same timestamp granularity are not told apart.
        """
        try:
            index_mtime = self.index_file.stat().st_mtime_ns
        except FileNotFoundError:
            return True

        for name in self._list_projects():
            try:
                if self._project_path(name).stat().st_mtime_ns > index_mtime:
                    return True
            except OSError:
                continue
        return False

    def ensure_fresh(self) -> bool:
        """Rebuild when stale; returns whether a rebuild happened."""
        if self.is_stale():
            self.rebuild_all()
            return True
        return False

    def compact(self) -> int:
        """Drop entries whose project no longer exists on disk, then persist."""
        existing = set(self._list_projects())
        with self._lock.write():
            stale = [tid for tid, loc in self._entries.items() if loc.project not in existing]
            for task_id in stale:
                del self._entries[task_id]
        self._writer.wait_idle()
        self.save()
        if stale:
            logger.info(f"Compacted {len(stale)} index entries")
        return len(stale)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def lookup(self, task_id: str) -> Optional[TaskLocation]:
        """Indexed location of ``task_id``; may be stale, so confirm before use."""
        with self._lock.read():
            return self._entries.get(task_id)

    def __contains__(self, task_id: object) -> bool:
        with self._lock.read():
            return task_id in self._entries

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def validate(self) -> List[str]:
        """Cross-check the index against the projects. Reports, never repairs."""
        errors: List[str] = []
        entries = {task_id: TaskLocation(loc.project, loc.location) for task_id, loc in self.snapshot_items()}
        loaded: Dict[str, Optional[Project]] = {}

        def project_named(name: str) -> Optional[Project]:
            if name not in loaded:
                try:
                    loaded[name] = self._load_project(name)
                except (CorruptedDocumentError, NotFoundError):
                    loaded[name] = None
            return loaded[name]

        for task_id, loc in sorted(entries.items()):
            project = project_named(loc.project)
            found = project.find_task(task_id) if project is not None else None
            if found is None:
                errors.append(f"Index references task {task_id} in {loc.project} but task not found")
            elif found[1] != loc.location:
                errors.append(
                    f"Index places task {task_id} at {loc.location} in {loc.project} but it is at {found[1]}"
                )

        for name in self._list_projects():
            project = project_named(name)
            if project is None:
                continue
            for task, _ in project.iter_tasks():
                loc = entries.get(task.id)
                if loc is None:
                    errors.append(f"Task {task.id} in project {name} not indexed")
                elif loc.project != name:
                    errors.append(f"Task {task.id} in project {name} indexed under project {loc.project}")

        return errors

    def snapshot_items(self) -> List[tuple]:
        with self._lock.read():
            return list(self._entries.items())

    def stats(self) -> Dict[str, object]:
        projects: Dict[str, int] = {}
        locations = {"project-level": 0, "module-level": 0}
        for _, loc in self.snapshot_items():
            projects[loc.project] = projects.get(loc.project, 0) + 1
            if loc.location == PROJECT_LOCATION:
                locations["project-level"] += 1
            else:
                locations["module-level"] += 1
        return {
            "total_tasks": sum(projects.values()),
            "projects": projects,
            "location_breakdown": locations,
        }
