"""Connection settings for the record store and the cache."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class DatabaseConfig:
    """Where the SQL record store and the Redis cache live."""

    postgres_url: str
    redis_url: str

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> DatabaseConfig:
        """Build a config from a parsed configuration table."""
        if not isinstance(data, Mapping):
            raise ValueError("database config must be a table")
        for name in ("postgres_url", "redis_url"):
            if not isinstance(data.get(name), str):
                raise ValueError(f"database config needs string field {name!r}")
        return DatabaseConfig(data["postgres_url"], data["redis_url"])

    def to_dict(self) -> dict[str, str]:
        """Return the config as a plain table."""
        return asdict(self)