"""Bootstrap data for the instance pool."""
from __future__ import annotations

import json
from pathlib import Path
from typing import List

import yaml

from .models import PoolInstance

DB_PROVIDER_DOMAIN = "postgres.database.azure.com"

_SEED_ROWS = (
    ("1", "pgadmin001", "SecurePass123!", "eastus"),
    ("2", "pgadmin002", "SecurePass456!", "westus2"),
    ("3", "pgadmin003", "SecurePass789!", "centralus"),
    ("4", "pgadmin004", "SecurePass101!", "eastus2"),
    ("5", "pgadmin005", "SecurePass202!", "westus"),
)


def _seed_instance(instance_id: str, admin: str, password: str, region: str) -> PoolInstance:
    name = f"pg-free-{int(instance_id):03d}"
    return PoolInstance(
        id=instance_id,
        name=name,
        admin_username=admin,
        admin_password=password,
        region=region,
        host=f"{name}.{DB_PROVIDER_DOMAIN}",
    )


DEFAULT_SEED: tuple[PoolInstance, ...] = tuple(_seed_instance(*row) for row in _SEED_ROWS)


def load_seed_file(path: Path) -> List[PoolInstance]:
    """Load pool seed records from a YAML or JSON file.

    The file holds either a list of records or a mapping with an
    ``instances`` key. Keys follow the on-disk pool layout.
    """

    with path.open("r", encoding="utf-8") as handle:
        if path.suffix.lower() == ".json":
            raw = json.load(handle)
        else:
            raw = yaml.safe_load(handle)

    if isinstance(raw, dict):
        raw = raw.get("instances")
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"Seed file {path} must define a non-empty list of instances")

    if not all(isinstance(item, dict) for item in raw):
        raise ValueError(f"Seed file {path} entries must be mappings")
    instances = [PoolInstance.from_dict(item) for item in raw]
    ids = [instance.id for instance in instances]
    if len(set(ids)) != len(ids):
        raise ValueError(f"Seed file {path} contains duplicate instance ids")
    return instances


__all__ = ["DB_PROVIDER_DOMAIN", "DEFAULT_SEED", "load_seed_file"]
