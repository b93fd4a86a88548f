"""The interface every relational database backend implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from bootdao.common import DatabaseConfig, Row


@dataclass(frozen=True)
class Connection:
    """Token handed out by a backend's connection pool."""


class RelationalDatabase(ABC):
    """Common operations of a pooled relational database."""

    @abstractmethod
    def placeholders(self, keys: Sequence[str]) -> list[str]:
        """Return one parameter placeholder per key, in the backend's syntax."""

    @classmethod
    @abstractmethod
    def connect(cls, config: DatabaseConfig) -> RelationalDatabase:
        """Open a database described by ``config``."""

    @abstractmethod
    def close(self) -> None:
        """Release the resources held by the database."""

    @abstractmethod
    def ping(self) -> None:
        """Check that the database answers; raise on failure."""

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a transaction that later statements run inside."""

    @abstractmethod
    def commit(self) -> None:
        """Commit the current transaction, if any."""

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the current transaction, if any."""

    @abstractmethod
    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run a statement and return the number of affected rows."""

    @abstractmethod
    def query(self, query: str, params: Sequence[Any] = ()) -> list[Row]:
        """Run a query and return all of its rows."""

    def query_one(self, query: str, params: Sequence[Any] = ()) -> Row | None:
        """Run a query and return its last row, or None when it has none."""
        rows = self.query(query, params)
        return rows[-1] if rows else None

    @abstractmethod
    def get_connection(self) -> Connection:
        """Check that a pooled connection can be obtained."""

    @abstractmethod
    def release_connection(self, conn: Connection) -> None:
        """Give back a connection obtained from get_connection."""