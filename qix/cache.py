"""In-memory project cache with dirty tracking.

Per project name the cache moves through ``absent -> clean -> dirty -> clean``
(after a successful save) and back to ``absent`` on invalidation. One
read/write lock guards the whole map.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Set

from .errors import FlushError
from .locking import ReadWriteLock
from .models import Project

logger = logging.getLogger("qix.cache")


class ProjectCache:
    """Loaded project documents keyed by project name."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._projects: Dict[str, Project] = {}
        self._dirty: Set[str] = set()

    def get(self, name: str) -> Optional[Project]:
        with self._lock.read():
            return self._projects.get(name)

    def put(self, name: str, project: Project) -> None:
        with self._lock.write():
            self._projects[name] = project

    def __contains__(self, name: object) -> bool:
        with self._lock.read():
            return name in self._projects

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._projects)

    def names(self) -> List[str]:
        with self._lock.read():
            return sorted(self._projects)

    # ------------------------------------------------------------------
    # Dirty bookkeeping
    # ------------------------------------------------------------------

    def mark_dirty(self, name: str) -> None:
        with self._lock.write():
            self._dirty.add(name)

    def clear_dirty(self, name: str) -> None:
        with self._lock.write():
            self._dirty.discard(name)

    def is_dirty(self, name: str) -> bool:
        with self._lock.read():
            return name in self._dirty

    def dirty_names(self) -> List[str]:
        with self._lock.read():
            return sorted(self._dirty)

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def invalidate(self, name: str) -> None:
        """Forget a project, including any unsaved changes to it."""
        with self._lock.write():
            self._projects.pop(name, None)
            self._dirty.discard(name)

    def clear(self) -> None:
        with self._lock.write():
            self._projects.clear()
            self._dirty.clear()

    def flush_all(self, save: Callable[[str, Project], None]) -> List[str]:
        """Persist every dirty project through ``save``.

        Every dirty entry is attempted even when an earlier one fails. Returns
        the names that were saved; raises :class:`FlushError` naming each
        project that failed once all of them have been tried.
        """
        with self._lock.read():
            pending = [(name, self._projects.get(name)) for name in sorted(self._dirty)]

        saved: List[str] = []
        failures: Dict[str, Exception] = {}
        for name, project in pending:
            if project is None:
                self.clear_dirty(name)
                continue
            try:
                save(name, project)
            except Exception as e:
                logger.error(f"Failed to flush project '{name}': {e}")
                failures[name] = e
                continue
            saved.append(name)

        if failures:
            raise FlushError(failures, saved)
        return saved

    def stats(self) -> Dict[str, int]:
        with self._lock.read():
            return {
                "cached_projects": len(self._projects),
                "dirty_projects": len(self._dirty),
            }
