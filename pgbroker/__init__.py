"""Core of the PostgreSQL instance broker."""

from __future__ import annotations

from typing import Any

from .allocation import AllocationService
from .errors import PoolExhausted, QuotaExceeded, StorageError
from .models import AssignedInstance, PoolInstance, UserAccount
from .pool import InstancePool
from .registry import UserRegistry


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the broker HTTP application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "AllocationService",
    "AssignedInstance",
    "InstancePool",
    "PoolExhausted",
    "PoolInstance",
    "QuotaExceeded",
    "StorageError",
    "UserAccount",
    "UserRegistry",
    "create_app",
]
