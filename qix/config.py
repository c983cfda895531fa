"""Configuration for the qix data directory.

The base directory comes from an explicit argument, then the ``QIX_DIR``
environment variable, then ``~/.qix``. An optional ``config`` properties
file in the base directory supplies the remaining settings; ``QIX_LOG_LEVEL``
and ``QIX_LOG_FILE`` override whatever the file says.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .errors import StorageIOError, ValidationFailedError

BASE_DIR_ENV = "QIX_DIR"
LOG_LEVEL_ENV = "QIX_LOG_LEVEL"
LOG_FILE_ENV = "QIX_LOG_FILE"

DEFAULT_DATE_FORMAT = "%Y-%m-%d"
DEFAULT_BACKUP_RETENTION_DAYS = 30
DEFAULT_LOG_LEVEL = "info"

_KEY_ALIASES = {
    "date_format": "date_format",
    "backup_retention_days": "backup_retention_days",
    "retention": "backup_retention_days",
    "log_level": "log_level",
    "qix_log_level": "log_level",
    "log_file": "log_file",
    "qix_log_file": "log_file",
}


def parse_properties(text: str) -> Dict[str, str]:
    """Parse ``key=value`` / ``key: value`` lines, skipping blanks and comments."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        cleaned = line.strip()
        if not cleaned or cleaned.startswith("#"):
            continue
        if "=" in cleaned:
            key, value = cleaned.split("=", 1)
        elif ":" in cleaned:
            key, value = cleaned.split(":", 1)
        else:
            continue
        key = key.strip().lower()
        values[_KEY_ALIASES.get(key, key)] = value.strip()
    return values


def validate_project_name(name: str) -> str:
    """Return ``name`` stripped, or raise if it cannot be used as a file stem."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationFailedError("project name cannot be empty")
    if "/" in cleaned or "\\" in cleaned or os.sep in cleaned:
        raise ValidationFailedError(f"project name '{cleaned}' cannot contain path separators")
    if cleaned.startswith("."):
        raise ValidationFailedError(f"project name '{cleaned}' cannot start with '.'")
    return cleaned


@dataclass(slots=True)
class Config:
    """Resolved locations and settings for one qix data directory.

    ``date_format`` and ``backup_retention_days`` are parsed and validated
    here for the display and backup tools that share the ``config`` file.
    Nothing in qix reads them: project documents always store dates as
    ``YYYY-MM-DD`` regardless of ``date_format``.
    """

    base_dir: Path
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[Path] = None
    date_format: str = DEFAULT_DATE_FORMAT
    backup_retention_days: int = DEFAULT_BACKUP_RETENTION_DAYS

    @classmethod
    def load(
        cls,
        base_dir: Optional[Path | str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        """Resolve the configuration from arguments, environment and config file."""
        env = os.environ if env is None else env
        if base_dir is None:
            base_dir = env.get(BASE_DIR_ENV) or (Path.home() / ".qix")
        base = Path(base_dir).expanduser().resolve()

        settings: Dict[str, str] = {}
        config_file = base / "config"
        if config_file.exists():
            try:
                settings = parse_properties(config_file.read_text(encoding="utf-8"))
            except OSError as e:
                raise StorageIOError(f"failed to read config file {config_file}: {e}", config_file) from e

        log_level = env.get(LOG_LEVEL_ENV) or settings.get("log_level") or DEFAULT_LOG_LEVEL
        log_file = env.get(LOG_FILE_ENV) or settings.get("log_file") or str(base / "qix.log")

        retention = DEFAULT_BACKUP_RETENTION_DAYS
        if settings.get("backup_retention_days"):
            try:
                retention = int(settings["backup_retention_days"])
            except ValueError:
                raise ValidationFailedError(
                    f"backup_retention_days must be an integer, got '{settings['backup_retention_days']}'"
                )

        return cls(
            base_dir=base,
            log_level=log_level.lower(),
            log_file=Path(log_file).expanduser(),
            date_format=settings.get("date_format") or DEFAULT_DATE_FORMAT,
            backup_retention_days=retention,
        )

    # ------------------------------------------------------------------
    # Derived locations
    # ------------------------------------------------------------------

    @property
    def projects_dir(self) -> Path:
        return self.base_dir / "projects"

    @property
    def backup_dir(self) -> Path:
        return self.base_dir / "backups"

    @property
    def index_file(self) -> Path:
        return self.base_dir / "index.json"

    @property
    def tracking_file(self) -> Path:
        return self.base_dir / "tracking.json"

    @property
    def config_file(self) -> Path:
        return self.base_dir / "config"

    def ensure_dirs(self) -> None:
        """Create the data directories, readable by the owning user only."""
        try:
            for directory in (self.base_dir, self.projects_dir, self.backup_dir):
                directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"could not initialize data directory {self.base_dir}: {e}", self.base_dir) from e

    # ------------------------------------------------------------------
    # Project files
    # ------------------------------------------------------------------

    def project_path(self, name: str) -> Path:
        return self.projects_dir / f"{validate_project_name(name)}.json"

    def project_exists(self, name: str) -> bool:
        return self.project_path(name).exists()

    def list_project_names(self) -> List[str]:
        """Sorted project names, one per ``projects/*.json`` file."""
        if not self.projects_dir.exists():
            return []
        return sorted(path.stem for path in self.projects_dir.glob("*.json") if path.is_file())
