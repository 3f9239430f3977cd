"""Whole-document JSON persistence for the pool and the user registry."""
from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from contextlib import suppress
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .errors import StorageReadError, StorageWriteError

POOL_FILENAME = "instanceCache.json"
REGISTRY_FILENAME = "users.json"

Record = Dict[str, Any]


class RecordStore(Protocol):
    """A named collection persisted as one ordered sequence of records.

    ``read`` returns the full collection and ``write`` replaces it. Callers
    that read, transform and write back must hold ``lock`` for the whole
    cycle.
    """

    lock: threading.RLock

    def read(self) -> List[Record]:
        ...

    def write(self, records: Iterable[Record]) -> None:
        ...

    def describe(self) -> str:
        ...


# The two collections share a backend; the aliases name the injection points.
InstancePoolStore = RecordStore
UserRegistryStore = RecordStore


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_data_dir(env_value: Optional[str]) -> Path:
    """Resolve the directory holding the broker's data files."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "data").resolve(strict=False)


class JsonFileStore:
    """Store a collection as a pretty-printed JSON array on disk.

    Writes go to a temporary sibling file that is renamed over the target, so
    a reader never observes a half-written document. There is no protection
    against another process interleaving its own read-modify-write cycle.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self.lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def describe(self) -> str:
        return str(self._path)

    def exists(self) -> bool:
        return self._path.exists()

    def read(self) -> List[Record]:
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = handle.read()
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageReadError(f"Failed to read {self._path}: {exc}", path=self._path) from exc

        if not raw.strip():
            return []

        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise StorageReadError(f"Invalid JSON in {self._path}: {exc}", path=self._path) from exc

        if not isinstance(data, list):
            raise StorageReadError(f"Expected a JSON array in {self._path}", path=self._path)
        return [item for item in data if isinstance(item, dict)]

    def write(self, records: Iterable[Record]) -> None:
        payload = list(records)
        tmp_name: Optional[str] = None
        try:
            _ensure_directory(self._path)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.write("\n")
            os.replace(tmp_name, self._path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as exc:
            raise StorageWriteError(f"Failed to write {self._path}: {exc}", path=self._path) from exc
        finally:
            if tmp_name is not None:
                with suppress(OSError):
                    os.unlink(tmp_name)


class MemoryStore:
    """In-process store; records are copied on the way in and out."""

    def __init__(self, records: Optional[Iterable[Record]] = None, *, name: str = "memory") -> None:
        self._records: List[Record] = copy.deepcopy(list(records or []))
        self._name = name
        self.lock = threading.RLock()

    def describe(self) -> str:
        return f"<{self._name}>"

    def read(self) -> List[Record]:
        return copy.deepcopy(self._records)

    def write(self, records: Iterable[Record]) -> None:
        self._records = copy.deepcopy(list(records))


def open_file_stores(data_dir: Path) -> tuple[JsonFileStore, JsonFileStore]:
    """Return the pool and registry stores located in ``data_dir``."""

    return JsonFileStore(data_dir / POOL_FILENAME), JsonFileStore(data_dir / REGISTRY_FILENAME)


__all__ = [
    "InstancePoolStore",
    "JsonFileStore",
    "MemoryStore",
    "POOL_FILENAME",
    "REGISTRY_FILENAME",
    "RecordStore",
    "UserRegistryStore",
    "open_file_stores",
    "resolve_data_dir",
]
