"""
Runtime configuration.

Settings can come from environment variables (``BRANCH_GEAR_*``) or from
the ``offline:`` section of a YAML settings file:

```yaml
offline:
  db_path: ~/.branch_gear/offline.db
  remote_url: https://project.example.co
  remote_api_key: "anon-key"
  max_retries: 3
  context_lookup_timeout: 1.5
```
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".branch_gear"

ENV_PREFIX = "BRANCH_GEAR_"


@dataclass
class OfflineConfig:
    """Configuration for the offline runtime."""

    # Local store
    db_path: str | Path = field(default_factory=lambda: DEFAULT_HOME / "offline.db")
    context_path: Path = field(default_factory=lambda: DEFAULT_HOME / "context.yaml")
    bulk_chunk_size: int = 500

    # Remote service
    remote_url: str | None = None
    remote_api_key: str | None = None
    remote_timeout: float = 10.0
    context_lookup_timeout: float = 1.5  # seconds, for "which branch am I" lookups

    # Sync behavior
    max_retries: int = 3
    auto_sync_interval: float = 30.0
    connectivity_interval: float = 15.0
    backoff_initial: float = 5.0
    backoff_max: float = 300.0
    backoff_multiplier: float = 2.0

    # Logging
    json_logs: bool = False

    def __post_init__(self) -> None:
        if self.db_path != ":memory:":
            self.db_path = Path(self.db_path).expanduser()
        self.context_path = Path(self.context_path).expanduser()

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> OfflineConfig:
        """Build a config from a mapping, coercing values to the field types.

        Unknown keys are ignored.
        """
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in values or values[f.name] is None:
                continue
            kwargs[f.name] = _coerce(f.name, values[f.name], cls)
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> OfflineConfig:
        """Create config from environment variables."""
        values = {}
        for f in fields(cls):
            raw = os.environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                values[f.name] = raw
        return cls.from_dict(values)

    @classmethod
    def from_yaml(cls, path: Path) -> OfflineConfig:
        """Create config from the ``offline:`` section of a YAML file.

        A missing or unreadable file yields the defaults.
        """
        if not path.exists():
            return cls()

        try:
            content = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read settings file {path}: {e}")
            return cls()

        section = content.get("offline", {}) if isinstance(content, dict) else {}
        return cls.from_dict(section or {})


_BOOL_TRUE = {"1", "true", "yes", "on"}


def _coerce(name: str, value: Any, cls: type) -> Any:
    """Coerce a raw (often string) value to the type of the named field."""
    if name in ("db_path", "context_path"):
        return str(value) if str(value) == ":memory:" else Path(str(value))
    if name in ("remote_url", "remote_api_key"):
        return str(value)

    sample = cls.__dataclass_fields__[name].default
    if isinstance(sample, bool):
        return value if isinstance(value, bool) else str(value).strip().lower() in _BOOL_TRUE
    if isinstance(sample, int):
        return int(value)
    if isinstance(sample, float):
        return float(value)
    return value
