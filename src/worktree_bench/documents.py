"""Small JSON document store with atomic rewrites.

Each document is loaded whole, mutated in memory, and written back through
a temp file + ``os.replace`` so a crash mid-write never leaves a partial
document behind. This is also the one place to add file locking if several
processes ever share a data directory.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp-{uuid.uuid4().hex}")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.write("\n")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def write_json_atomic(path: Path, payload: Any) -> None:
    write_text_atomic(path, json.dumps(payload, indent=2, default=str))


def read_json(path: Path) -> Any:
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


class JsonDocument(Generic[M]):
    """A single pydantic-typed JSON document on disk."""

    def __init__(self, path: str | Path, model_cls: type[M]):
        self.path = Path(path)
        self.model_cls = model_cls

    def load(self) -> M:
        """Read the document; absent or unreadable files read as empty."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self.model_cls()
        except OSError as e:
            logger.warning("Could not read %s: %s", self.path, e)
            return self.model_cls()
        try:
            return self.model_cls.model_validate_json(text)
        except ValidationError as e:
            logger.warning("Ignoring unreadable document %s: %s", self.path, e)
            return self.model_cls()

    def save(self, document: M) -> None:
        write_text_atomic(self.path, document.model_dump_json(indent=2))

    def update(self, mutate: Callable[[M], Any]) -> M:
        """Load, apply ``mutate`` in memory, and atomically rewrite."""
        document = self.load()
        mutate(document)
        self.save(document)
        return document
