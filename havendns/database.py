"""Access to the SQL record store and the Redis cache."""

from __future__ import annotations

from typing import Any

import redis
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from havendns.db_config import DatabaseConfig

_LOOKUP = text("SELECT record, ttl FROM record WHERE domain = :domain AND type = :type")


def add(left: int, right: int) -> int:
    """Return the sum of two numbers."""
    return left + right


class Database:
    """A record store engine paired with a Redis client."""

    def __init__(self, engine: Engine, redis_client: Any) -> None:
        self._engine = engine
        self._redis = redis_client

    def pool(self) -> Engine:
        """The SQL engine holding the connection pool."""
        return self._engine

    def redis_client(self) -> Any:
        """The Redis client."""
        return self._redis

    def lookup_record(self, domain: str, record_type: str) -> tuple[str, int] | None:
        """Find the stored value and TTL for a domain and record type.

        A missing TTL reads as 0. Returns None when nothing is stored.
        """
        with self._engine.connect() as conn:
            row = conn.execute(_LOOKUP, {"domain": domain, "type": record_type}).first()
        if row is None:
            return None
        value, ttl = row
        return value, ttl if ttl is not None else 0

    def close(self) -> None:
        """Release the SQL pool and the Redis connection."""
        self._engine.dispose()
        if self._redis is not None:
            self._redis.close()


def connect(config: DatabaseConfig) -> Database:
    """Open and check both connections described by the config."""
    engine = create_engine(config.postgres_url)
    try:
        with engine.connect():
            pass
        client = redis.Redis.from_url(config.redis_url)
        client.ping()
    except BaseException:
        engine.dispose()
        raise
    return Database(engine, client)