"""Data-quality diagnostics.

Findings here are data, not errors: every function returns its report even
when it is non-empty, and nothing is repaired automatically.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from .errors import CorruptedDocumentError, ProjectNotFoundError
from .storage import Storage

logger = logging.getLogger("qix.consistency")

ORPHAN_CATEGORIES = ("parent_references", "dependency_references", "sprint_references")


def find_orphaned_references(storage: Storage, project_name: str) -> Dict[str, List[str]]:
    """Parent, dependency and sprint references in one project that point at no task."""
    project = storage.load_project(project_name)
    tasks = project.all_tasks()
    existing = {task.id for task in tasks}
    orphaned: Dict[str, List[str]] = {category: [] for category in ORPHAN_CATEGORIES}

    for task in tasks:
        if task.parent_id and task.parent_id not in existing:
            orphaned["parent_references"].append(
                f"Task {task.id} references non-existent parent {task.parent_id}"
            )
        for dep_id in task.dependencies:
            if dep_id not in existing:
                orphaned["dependency_references"].append(f"Task {task.id} depends on non-existent task {dep_id}")

    for sprint in project.sprints:
        for task_id in sprint.task_ids:
            if task_id not in existing:
                orphaned["sprint_references"].append(f"Sprint {sprint.name} references non-existent task {task_id}")

    return orphaned


def orphan_count(report: Dict[str, List[str]]) -> int:
    return sum(len(items) for items in report.values())


def health_report(storage: Storage) -> Dict[str, Any]:
    """Staleness, index validation, orphans per project and cache statistics."""
    orphans: Dict[str, Dict[str, List[str]]] = {}
    unreadable: List[str] = []
    for name in storage.list_projects():
        try:
            report = find_orphaned_references(storage, name)
        except (CorruptedDocumentError, ProjectNotFoundError) as e:
            logger.warning(f"Cannot check project '{name}': {e}")
            unreadable.append(name)
            continue
        if orphan_count(report):
            orphans[name] = report

    index_errors = storage.index.validate()
    stale = storage.index.is_stale()

    return {
        "index_stale": stale,
        "index_errors": index_errors,
        "orphaned_references": orphans,
        "unreadable_projects": unreadable,
        "cache": storage.cache_stats(),
        "index": storage.index.stats(),
        "healthy": not (stale or index_errors or orphans or unreadable),
    }
