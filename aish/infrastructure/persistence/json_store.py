"""Flat-file JSON persistence for the context stores.

Each store owns exactly one file. Reads go through a single
decode-or-default function; a file that is missing, unreadable or fails
validation yields the store's default shape, never a partially recovered
one. Writes replace the whole file atomically.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def read_json(path: Path) -> Optional[Any]:
    """Return parsed JSON from ``path`` or None when the file does not exist"""
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def load_model_or_default(
    path: Path,
    model: Type[ModelT],
    default_factory: Callable[[], ModelT],
    prepare: Optional[Callable[[Any], Any]] = None,
) -> ModelT:
    """Decode ``path`` into ``model`` or fall back to ``default_factory()``.

    ``prepare`` may reshape the raw JSON before validation (legacy layouts).
    """
    try:
        raw = read_json(path)
        if raw is None:
            return default_factory()
        if prepare is not None:
            raw = prepare(raw)
        return model.model_validate(raw)
    except (OSError, ValueError, TypeError, ValidationError) as e:
        logger.warning("Discarding unreadable store file", path=str(path), error=str(e))
        return default_factory()


def write_json_atomic(path: Path, data: Any, indent: Optional[int] = 2) -> None:
    """Serialize ``data`` and atomically replace ``path`` with it"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def write_model_atomic(path: Path, model: BaseModel) -> None:
    """Persist a pydantic model as pretty-printed JSON"""
    write_json_atomic(path, model.model_dump(mode="json"))
