"""qix - local project and task tracker storage core."""

from .config import Config
from .errors import QixError
from .service import TrackerService
from .storage import Storage
from .tracking import TimeTracker

__version__ = "0.1.0"

__all__ = [
    "Config",
    "QixError",
    "Storage",
    "TimeTracker",
    "TrackerService",
]
