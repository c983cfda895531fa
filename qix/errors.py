"""Error taxonomy for the qix storage core.

Every failure raised by the codec, the cache, the index or the mutation API
is a subclass of :class:`QixError` and carries the names of the objects it
concerns so callers can render a meaningful message.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional


class QixError(Exception):
    """Base class for all storage errors."""


class NotFoundError(QixError):
    """Raised when a project, module, task, sprint or document is absent."""


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project: str) -> None:
        self.project = project
        super().__init__(f"project '{project}' not found")


class QixModuleNotFoundError(NotFoundError):
    def __init__(self, project: str, module: str) -> None:
        self.project = project
        self.module = module
        super().__init__(f"module '{module}' not found in project '{project}'")


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str, project: Optional[str] = None) -> None:
        self.task_id = task_id
        self.project = project
        where = f" in project '{project}'" if project else ""
        super().__init__(f"task '{task_id}' not found{where}")


class SprintNotFoundError(NotFoundError):
    def __init__(self, project: str, sprint: str) -> None:
        self.project = project
        self.sprint = sprint
        super().__init__(f"sprint '{sprint}' not found in project '{project}'")


class DocumentNotFoundError(NotFoundError):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(f"document not found: {self.path}")


class ConflictError(QixError):
    """Raised when a create would collide with an existing object."""


class DuplicateNameError(ConflictError):
    def __init__(self, kind: str, name: str, project: Optional[str] = None) -> None:
        self.kind = kind
        self.name = name
        self.project = project
        where = f" in project '{project}'" if project and kind != "project" else ""
        super().__init__(f"{kind} '{name}' already exists{where}")


class InvalidReferenceError(QixError):
    """Raised for self-referential parent or dependency links."""

    def __init__(self, message: str, task_id: Optional[str] = None) -> None:
        self.task_id = task_id
        super().__init__(message)


class CorruptedDocumentError(QixError):
    """Raised when a file does not parse as the expected document."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"document {self.path} is corrupted: {reason}")


class StorageIOError(QixError):
    """Raised when a filesystem read, write or rename fails."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        super().__init__(message)


class ValidationFailedError(QixError):
    """Raised when a change or an input value is rejected."""


class TrackingError(QixError):
    """Raised for invalid tracking session transitions."""


class FlushError(QixError):
    """Raised by ``flush_all`` after every dirty project has been attempted.

    Attributes:
        failures: Mapping of project name to the error raised while saving it.
        saved: Names of the projects that were persisted successfully.
    """

    def __init__(self, failures: Dict[str, Exception], saved: Optional[list] = None) -> None:
        self.failures = dict(failures)
        self.saved = list(saved or [])
        names = ", ".join(sorted(self.failures))
        super().__init__(f"failed to save project(s): {names}")
