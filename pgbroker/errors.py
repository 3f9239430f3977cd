"""Exceptions raised by the instance broker."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class BrokerError(RuntimeError):
    """Base class for broker failures."""


class QuotaExceeded(BrokerError):
    """Raised when a user already holds the maximum number of instances."""

    def __init__(self, current: int, maximum: int) -> None:
        super().__init__(f"Maximum instances limit reached ({maximum} instances per user)")
        self.current = current
        self.maximum = maximum


class PoolExhausted(BrokerError):
    """Raised when no instance is left in the pool."""

    def __init__(self, available: int = 0) -> None:
        super().__init__("No available instances in cache. Please try again later.")
        self.available = available


class DuplicateInstance(BrokerError):
    """Raised when an instance id is already present in the pool."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance {instance_id} is already in the pool")
        self.instance_id = instance_id


class StorageError(BrokerError):
    """Raised when a persisted collection cannot be read or written."""

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


class StorageReadError(StorageError):
    pass


class StorageWriteError(StorageError):
    pass


__all__ = [
    "BrokerError",
    "DuplicateInstance",
    "PoolExhausted",
    "QuotaExceeded",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
]
