"""Per-user ledger of assigned instances with quota enforcement."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from .errors import QuotaExceeded, StorageReadError, StorageWriteError
from .models import AssignedInstance, PoolInstance, UserAccount
from .storage import Record, UserRegistryStore

logger = logging.getLogger("pgbroker.registry")

DEFAULT_MAX_PER_USER = 3


class UserRegistry:
    """Tracks which instances belong to which user.

    Accounts exist only while they own at least one instance: the first
    assignment creates one and removing the last instance deletes it.
    """

    def __init__(
        self,
        store: UserRegistryStore,
        *,
        max_per_user: int = DEFAULT_MAX_PER_USER,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        if max_per_user < 1:
            raise ValueError("max_per_user must be at least 1")
        self._store = store
        self._max_per_user = max_per_user
        self._clock = clock
        self._id_factory = id_factory

    @property
    def store(self) -> UserRegistryStore:
        return self._store

    def get_max_per_user(self) -> int:
        return self._max_per_user

    def get_instances(self, username: str) -> List[AssignedInstance]:
        account = self._find(self._load(), username)
        return list(account.instances) if account else []

    def get_instance(self, username: str, instance_id: str) -> Optional[AssignedInstance]:
        account = self._find(self._load(), username)
        if account is None:
            return None
        return account.find(instance_id)

    def get_instance_count(self, username: str) -> int:
        return len(self.get_instances(username))

    def can_assign(self, username: str) -> bool:
        return self.get_instance_count(username) < self._max_per_user

    def assign(self, username: str, instance: PoolInstance) -> AssignedInstance:
        """Record ``instance`` as owned by ``username``.

        The quota is checked again here, under the store lock, so that a
        caller's earlier ``can_assign`` is never the only guard.
        """

        with self._store.lock:
            entries = self._load_entries()
            account = self._find(entries, username)
            current = len(account.instances) if account else 0
            if current >= self._max_per_user:
                raise QuotaExceeded(current, self._max_per_user)

            assigned = AssignedInstance.from_pool(
                instance,
                now=self._clock() if self._clock else None,
                id_factory=self._id_factory,
            )
            if account is None:
                account = UserAccount(username=username)
                entries.append(account)
            account.instances.append(assigned)
            self._save(entries)

        logger.info(
            "Assigned %s as %s to user %s (%d/%d)",
            instance.name,
            assigned.id,
            username,
            current + 1,
            self._max_per_user,
        )
        return assigned

    def unassign(self, username: str, instance_id: str) -> bool:
        """Retire one of the user's instances; ``False`` if it is not theirs."""

        with self._store.lock:
            entries = self._load_entries()
            account = self._find(entries, username)
            if account is None or not account.remove(instance_id):
                return False
            self._save(entries)

        logger.info("Retired instance %s of user %s", instance_id, username)
        return True

    def list_all_accounts(self) -> List[UserAccount]:
        return self._load()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load(self) -> List[UserAccount]:
        return [entry for entry in self._load_entries() if isinstance(entry, UserAccount)]

    def _load_entries(self) -> List[Union[UserAccount, Record]]:
        """Return parsed accounts in storage order.

        Rows that cannot be parsed stay in place as raw records so that a
        later save writes them back unchanged.
        """

        try:
            records = self._store.read()
        except StorageReadError as exc:
            logger.warning("Treating unreadable user registry %s as empty: %s", self._store.describe(), exc)
            return []

        entries: List[Union[UserAccount, Record]] = []
        for record in records:
            try:
                account = UserAccount.from_dict(record)
            except ValueError as exc:
                logger.warning("Keeping malformed registry record %r unchanged: %s", record.get("githubUsername"), exc)
                entries.append(record)
                continue
            if account.unparsed:
                logger.warning(
                    "Keeping %d malformed instance record(s) of user %s unchanged",
                    len(account.unparsed),
                    account.username,
                )
            entries.append(account)
        return entries

    def _save(self, entries: List[Union[UserAccount, Record]]) -> None:
        records: List[Record] = []
        for entry in entries:
            if isinstance(entry, UserAccount):
                if not entry.is_empty:
                    records.append(entry.to_dict())
            else:
                records.append(entry)
        try:
            self._store.write(records)
        except StorageWriteError:
            logger.exception("Failed to persist the user registry to %s", self._store.describe())
            raise

    @staticmethod
    def _find(entries: List[Union[UserAccount, Record]], username: str) -> Optional[UserAccount]:
        for account in entries:
            if isinstance(account, UserAccount) and account.username == username:
                return account
        return None


__all__ = ["DEFAULT_MAX_PER_USER", "UserRegistry"]
