"""Domain models for pooled and assigned PostgreSQL instances."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

POSTGRES_PORT = 5432


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    # Older data files carry JavaScript style timestamps ending in "Z".
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _require(data: Mapping[str, object], *keys: str) -> None:
    missing = [key for key in keys if data.get(key) in (None, "")]
    if missing:
        raise ValueError(f"Missing required instance fields: {', '.join(missing)}")


@dataclass(frozen=True)
class PoolInstance:
    """A provisioned instance waiting in the pool for its first owner."""

    id: str
    name: str
    admin_username: str
    admin_password: str
    region: str
    host: str

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "PoolInstance":
        _require(data, "id", "instanceName")
        return PoolInstance(
            id=str(data["id"]),
            name=str(data["instanceName"]),
            admin_username=str(data.get("adminUsername", "")),
            admin_password=str(data.get("adminPassword", "")),
            region=str(data.get("region", "")),
            host=str(data.get("host", "")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "instanceName": self.name,
            "adminUsername": self.admin_username,
            "adminPassword": self.admin_password,
            "region": self.region,
            "host": self.host,
        }


@dataclass(frozen=True)
class AssignedInstance:
    """An instance owned by exactly one user.

    The credentials are copied verbatim from the pool record at assignment
    time and are stored in plaintext.
    """

    id: str
    instance_name: str
    host: str
    admin_user: str
    password: str
    region: str
    created_at: datetime

    @classmethod
    def from_pool(
        cls,
        instance: PoolInstance,
        *,
        now: Optional[datetime] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> "AssignedInstance":
        """Build a fresh assignment record from a withdrawn pool instance."""

        new_id = id_factory() if id_factory is not None else str(uuid.uuid4())
        return cls(
            id=new_id,
            instance_name=instance.name,
            host=instance.host,
            admin_user=instance.admin_username,
            password=instance.admin_password,
            region=instance.region,
            created_at=now or _utcnow(),
        )

    def connection_string(self) -> str:
        return f"postgresql://{self.admin_user}:{self.password}@{self.host}:{POSTGRES_PORT}/postgres"

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "AssignedInstance":
        _require(data, "id", "instanceName", "createdAt")
        return AssignedInstance(
            id=str(data["id"]),
            instance_name=str(data["instanceName"]),
            host=str(data.get("host", "")),
            admin_user=str(data.get("adminUser", "")),
            password=str(data.get("password", "")),
            region=str(data.get("region", "")),
            created_at=_parse_datetime(str(data["createdAt"])),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "instanceName": self.instance_name,
            "host": self.host,
            "adminUser": self.admin_user,
            "password": self.password,
            "region": self.region,
            "createdAt": _serialize_datetime(self.created_at),
        }


@dataclass
class UserAccount:
    """Ledger entry holding the instances currently assigned to one user."""

    username: str
    instances: List[AssignedInstance] = field(default_factory=list)
    # Instance rows that could not be parsed; written back untouched.
    unparsed: List[object] = field(default_factory=list, repr=False)

    @property
    def is_empty(self) -> bool:
        """Accounts without instances are not kept in the registry."""

        return not self.instances and not self.unparsed

    def find(self, instance_id: str) -> Optional[AssignedInstance]:
        for instance in self.instances:
            if instance.id == instance_id:
                return instance
        return None

    def remove(self, instance_id: str) -> bool:
        remaining = [instance for instance in self.instances if instance.id != instance_id]
        if len(remaining) == len(self.instances):
            return False
        self.instances = remaining
        return True

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "UserAccount":
        _require(data, "githubUsername")
        raw_instances = data.get("instances") or []
        if not isinstance(raw_instances, list):
            raise ValueError("Account instances must be a list")
        account = UserAccount(username=str(data["githubUsername"]))
        for item in raw_instances:
            try:
                if not isinstance(item, Mapping):
                    raise ValueError("Instance entries must be mappings")
                account.instances.append(AssignedInstance.from_dict(item))
            except ValueError:
                account.unparsed.append(item)
        return account

    def to_dict(self) -> Dict[str, object]:
        return {
            "githubUsername": self.username,
            "instances": [instance.to_dict() for instance in self.instances] + list(self.unparsed),
        }


@dataclass(frozen=True)
class InstanceListing:
    """Quota-aware view of a user's instances."""

    instances: List[AssignedInstance]
    count: int
    max_instances: int
    can_create_more: bool


__all__ = [
    "AssignedInstance",
    "InstanceListing",
    "POSTGRES_PORT",
    "PoolInstance",
    "UserAccount",
]
