"""JSON document codec with atomic writes.

Every write goes to a sibling temporary file that is then renamed over the
target with ``os.replace``, so a reader sees either the old file or the new
one and never a partial write. Files are created readable by the owner only.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, TypeVar

from .errors import CorruptedDocumentError, DocumentNotFoundError, StorageIOError, ValidationFailedError

logger = logging.getLogger("qix.codec")

T = TypeVar("T")


def read_json(path: Path) -> Any:
    """Read and parse a JSON file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise DocumentNotFoundError(path)
    except OSError as e:
        raise StorageIOError(f"failed to read {path}: {e}", path) from e

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise CorruptedDocumentError(path, f"invalid JSON at line {e.lineno}: {e.msg}") from e


def read_document(path: Path, factory: Callable[[Dict[str, Any]], T]) -> T:
    """Read ``path`` and build a document from it with ``factory``.

    Raises:
        DocumentNotFoundError: the file does not exist.
        CorruptedDocumentError: the content is not JSON or does not match the schema.
        StorageIOError: the file exists but cannot be read.
    """
    data = read_json(path)
    if not isinstance(data, dict):
        raise CorruptedDocumentError(path, f"expected a JSON object, got {type(data).__name__}")
    try:
        return factory(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise CorruptedDocumentError(path, f"schema mismatch: {type(e).__name__}: {e}") from e


def serialize(payload: Any, *, sort_keys: bool = False) -> str:
    """Render ``payload`` as pretty-printed JSON, rejecting unserializable values."""
    try:
        return json.dumps(payload, indent=2, sort_keys=sort_keys, ensure_ascii=False, allow_nan=False) + "\n"
    except (TypeError, ValueError) as e:
        raise ValidationFailedError(f"invalid document data: {e}") from e


def write_json(path: Path, payload: Any, *, sort_keys: bool = False) -> None:
    """Serialize ``payload`` and atomically replace ``path`` with it."""
    path = Path(path)
    content = serialize(payload, sort_keys=sort_keys)

    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise StorageIOError(f"failed to create temporary file for {path}: {e}", path) from e

    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        _discard(tmp_name)
        raise StorageIOError(f"failed to write {path}: {e}", path) from e
    except BaseException:
        _discard(tmp_name)
        raise

    logger.debug(f"Wrote {len(content)} bytes to {path}")


def write_document(path: Path, document: Any) -> None:
    """Atomically write a model object exposing ``to_dict()``."""
    write_json(path, document.to_dict())


def _discard(tmp_name: str) -> None:
    try:
        os.unlink(tmp_name)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temporary file {tmp_name}: {e}")
