"""Configuration management for the instance broker."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .registry import DEFAULT_MAX_PER_USER
from .storage import resolve_data_dir


def _parse_bool(value: object, *, name: str) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value {value!r} for {name}")


def _parse_positive_int(value: object, *, name: str) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid integer value {value!r} for {name}") from exc
    if parsed < 1:
        raise ValueError(f"{name} must be at least 1")
    return parsed


def _resolve_path(raw: object, base_path: Optional[Path]) -> Path:
    candidate = Path(str(raw)).expanduser()
    if not candidate.is_absolute() and base_path is not None:
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


def parse_token_table(raw: str) -> Dict[str, str]:
    """Parse ``token:username`` pairs separated by commas."""

    tokens: Dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        token, sep, username = entry.partition(":")
        if not sep or not token.strip() or not username.strip():
            raise ValueError(f"Invalid API token entry {entry!r}; expected 'token:username'")
        tokens[token.strip()] = username.strip()
    return tokens


@dataclass(frozen=True)
class BrokerSettings:
    """Runtime settings for the broker service."""

    data_dir: Path
    max_instances_per_user: int = DEFAULT_MAX_PER_USER
    rollback_on_assign_failure: bool = False
    seed_file: Optional[Path] = None
    api_tokens: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "BrokerSettings":
        """Create :class:`BrokerSettings` from a raw configuration mapping."""

        data_dir_raw = data.get("data_dir")
        data_dir = _resolve_path(data_dir_raw, base_path) if data_dir_raw else resolve_data_dir(None)

        seed_raw = data.get("seed_file")
        seed_file = _resolve_path(seed_raw, base_path) if seed_raw else None

        tokens_raw = data.get("api_tokens") or {}
        if isinstance(tokens_raw, str):
            api_tokens = parse_token_table(tokens_raw)
        elif isinstance(tokens_raw, Mapping):
            api_tokens = {str(token): str(username) for token, username in tokens_raw.items()}
        else:
            raise ValueError("api_tokens must be a mapping of token to username")

        return BrokerSettings(
            data_dir=data_dir,
            max_instances_per_user=_parse_positive_int(
                data.get("max_instances_per_user", DEFAULT_MAX_PER_USER),
                name="max_instances_per_user",
            ),
            rollback_on_assign_failure=_parse_bool(
                data.get("rollback_on_assign_failure", False),
                name="rollback_on_assign_failure",
            ),
            seed_file=seed_file,
            api_tokens=api_tokens,
        )

    def with_env_overrides(self, environ: Mapping[str, str]) -> "BrokerSettings":
        """Return a copy with ``BROKER_*`` environment variables applied."""

        updates: Dict[str, object] = {}
        if environ.get("BROKER_DATA_DIR"):
            updates["data_dir"] = resolve_data_dir(environ["BROKER_DATA_DIR"])
        if environ.get("BROKER_MAX_INSTANCES_PER_USER"):
            updates["max_instances_per_user"] = _parse_positive_int(
                environ["BROKER_MAX_INSTANCES_PER_USER"], name="BROKER_MAX_INSTANCES_PER_USER"
            )
        if environ.get("BROKER_ROLLBACK_ON_ASSIGN_FAILURE"):
            updates["rollback_on_assign_failure"] = _parse_bool(
                environ["BROKER_ROLLBACK_ON_ASSIGN_FAILURE"], name="BROKER_ROLLBACK_ON_ASSIGN_FAILURE"
            )
        if environ.get("BROKER_SEED_FILE"):
            updates["seed_file"] = _resolve_path(environ["BROKER_SEED_FILE"], None)
        if environ.get("BROKER_API_TOKENS"):
            updates["api_tokens"] = parse_token_table(environ["BROKER_API_TOKENS"])
        return replace(self, **updates) if updates else self


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the YAML configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "broker.yaml").resolve(strict=False)


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> BrokerSettings:
    """Load settings from YAML (if present) and the environment."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("BROKER_CONFIG"))

    raw: Dict[str, object] = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw = loaded

    settings = BrokerSettings.from_dict(raw, base_path=path.parent)
    return settings.with_env_overrides(env)


__all__ = ["BrokerSettings", "load_settings", "parse_token_table", "resolve_config_path"]
