"""User-facing allocation workflow built on the pool and the registry."""
from __future__ import annotations

import logging
from typing import Optional

from .errors import PoolExhausted, QuotaExceeded
from .models import AssignedInstance, InstanceListing, PoolInstance
from .pool import InstancePool
from .registry import UserRegistry

logger = logging.getLogger("pgbroker.allocation")


class AllocationService:
    """Hands out pooled instances to users within their quota.

    Creating an instance withdraws from the pool and then assigns in the
    registry. Both steps persist on their own; if the assignment fails after a
    withdrawal, the instance is lost from the pool unless
    ``rollback_on_assign_failure`` is enabled. Deleting an instance retires
    it, it never goes back to the pool.
    """

    def __init__(
        self,
        pool: InstancePool,
        registry: UserRegistry,
        *,
        rollback_on_assign_failure: bool = False,
    ) -> None:
        self._pool = pool
        self._registry = registry
        self._rollback_on_assign_failure = rollback_on_assign_failure

    @property
    def pool(self) -> InstancePool:
        return self._pool

    @property
    def registry(self) -> UserRegistry:
        return self._registry

    def create_for_user(self, username: str) -> AssignedInstance:
        if not self._registry.can_assign(username):
            raise QuotaExceeded(
                self._registry.get_instance_count(username),
                self._registry.get_max_per_user(),
            )

        withdrawn = self._pool.withdraw_first()
        if withdrawn is None:
            raise PoolExhausted(self._pool.count())

        try:
            return self._registry.assign(username, withdrawn)
        except QuotaExceeded:
            if self._rollback_on_assign_failure:
                self._pool.restore(withdrawn)
                logger.info("Returned %s to the pool after a concurrent quota rejection", withdrawn.id)
            else:
                logger.warning(
                    "Instance %s (%s) was withdrawn for %s but could not be assigned; it is no longer pooled",
                    withdrawn.id,
                    withdrawn.name,
                    username,
                )
            raise

    def list_for_user(self, username: str) -> InstanceListing:
        instances = self._registry.get_instances(username)
        maximum = self._registry.get_max_per_user()
        return InstanceListing(
            instances=instances,
            count=len(instances),
            max_instances=maximum,
            can_create_more=len(instances) < maximum,
        )

    def get_for_user(self, username: str, instance_id: str) -> Optional[AssignedInstance]:
        return self._registry.get_instance(username, instance_id)

    def remove_for_user(self, username: str, instance_id: str) -> bool:
        return self._registry.unassign(username, instance_id)

    # Operational access to the pool, used by the cache routes and the CLI.
    def available_count(self) -> int:
        return self._pool.count()

    def reserve(self) -> Optional[PoolInstance]:
        return self._pool.withdraw_first()

    def restore(self, instance: PoolInstance) -> None:
        self._pool.restore(instance)


__all__ = ["AllocationService"]
