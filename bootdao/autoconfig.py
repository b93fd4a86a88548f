"""Open a database from environment settings."""

from __future__ import annotations

from bootdao.common import DatabaseConfig
from bootdao.database import RelationalDatabase
from bootdao.mysql import MySqlDatabase
from bootdao.sqlite import SqliteDatabase

_BACKENDS: dict[str, type[RelationalDatabase]] = {
    "mysql": MySqlDatabase,
    "sqlite": SqliteDatabase,
}


def auto_config(backend: str) -> RelationalDatabase:
    """Connect to ``backend`` ("mysql" or "sqlite") using the environment's settings."""
    try:
        database_type = _BACKENDS[backend.lower()]
    except KeyError:
        known = ", ".join(sorted(_BACKENDS))
        raise ValueError(f"unknown backend {backend!r}; expected one of: {known}") from None
    return database_type.connect(DatabaseConfig.from_env())