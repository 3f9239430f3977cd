"""The pool of provisioned instances that have not been handed out yet."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .errors import DuplicateInstance, StorageReadError, StorageWriteError
from .models import PoolInstance
from .storage import InstancePoolStore, Record

logger = logging.getLogger("pgbroker.pool")


class InstancePool:
    """First-come-first-served supply of unassigned instances."""

    def __init__(self, store: InstancePoolStore) -> None:
        self._store = store

    @property
    def store(self) -> InstancePoolStore:
        return self._store

    def list_available(self) -> List[PoolInstance]:
        """Return the pool contents in storage order.

        An unreadable pool is reported as empty.
        """

        instances: List[PoolInstance] = []
        for record in self._read():
            try:
                instances.append(PoolInstance.from_dict(record))
            except ValueError as exc:
                logger.warning("Skipping malformed pool record %r: %s", record.get("id"), exc)
        return instances

    def count(self) -> int:
        return len(self.list_available())

    def withdraw_first(self) -> Optional[PoolInstance]:
        """Remove and return the oldest instance, or ``None`` when the pool is empty."""

        with self._store.lock:
            instances = self.list_available()
            if not instances:
                return None

            withdrawn, remaining = instances[0], instances[1:]
            # The withdrawn instance is not put back if this write fails.
            self._write(remaining)

        logger.info("Withdrew instance %s (%s) from the pool", withdrawn.id, withdrawn.name)
        return withdrawn

    def restore(self, instance: PoolInstance) -> None:
        """Append ``instance`` to the end of the pool.

        Raises :class:`DuplicateInstance` if its id is already pooled.
        """

        with self._store.lock:
            instances = self.list_available()
            if any(existing.id == instance.id for existing in instances):
                raise DuplicateInstance(instance.id)
            instances.append(instance)
            self._write(instances)

        logger.info("Returned instance %s (%s) to the pool", instance.id, instance.name)

    def ensure_seeded(self, seed: Iterable[PoolInstance]) -> bool:
        """Replace an empty pool with ``seed``; a non-empty pool is left untouched."""

        with self._store.lock:
            if self.list_available():
                return False
            instances = list(seed)
            self._write(instances)

        logger.info("Seeded the instance pool with %d instance(s)", len(instances))
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _read(self) -> List[Record]:
        try:
            return self._store.read()
        except StorageReadError as exc:
            logger.warning("Treating unreadable instance pool %s as empty: %s", self._store.describe(), exc)
            return []

    def _write(self, instances: List[PoolInstance]) -> None:
        try:
            self._store.write([instance.to_dict() for instance in instances])
        except StorageWriteError:
            logger.exception("Failed to persist the instance pool to %s", self._store.describe())
            raise


__all__ = ["InstancePool"]
