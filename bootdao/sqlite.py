"""SQLite backend with a small pool of sqlite3 connections."""

from __future__ import annotations

import re
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from bootdao.common import (
    ConversionError,
    DatabaseConfig,
    DbConnectionError,
    PoolError,
    QueryError,
    Row,
    TransactionError,
)
from bootdao.database import Connection, RelationalDatabase

_NUMBERED_PARAM = re.compile(r"\$(\d+)")
_POOL_TIMEOUT = 30.0
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class _PoolTimeout(Exception):
    """No pooled connection became free in time."""


_POOL_ERRORS = (_PoolTimeout, sqlite3.Error)


def _decode_text(raw: bytes) -> str:
    return raw.decode("utf-8", "replace")


class _ConnectionPool:
    """Hands out at most ``max_size`` connections, reusing the newest idle one."""

    def __init__(self, path: str, max_size: int, timeout: float = _POOL_TIMEOUT) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self._path = path
        self._max_size = max_size
        self._timeout = timeout
        self._idle: list[sqlite3.Connection] = []
        self._open = 0
        self._cond = threading.Condition()
        self.release(self.acquire())

    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, isolation_level=None, check_same_thread=False)
        conn.text_factory = _decode_text
        return conn

    def acquire(self) -> sqlite3.Connection:
        with self._cond:
            available = self._cond.wait_for(
                lambda: self._idle or self._open < self._max_size, self._timeout
            )
            if not available:
                raise _PoolTimeout("timed out waiting for a connection")
            if self._idle:
                return self._idle.pop()
            self._open += 1
        try:
            return self._open_connection()
        except BaseException:
            with self._cond:
                self._open -= 1
                self._cond.notify()
            raise

    def release(self, conn: sqlite3.Connection) -> None:
        with self._cond:
            self._idle.append(conn)
            self._cond.notify()

    def close_idle(self) -> None:
        with self._cond:
            idle, self._idle = self._idle, []
            self._open -= len(idle)
            self._cond.notify_all()
        for conn in idle:
            conn.close()


def _to_sql(value: Any) -> Any:
    if value is None or isinstance(value, (float, str, bytes)):
        return value
    if isinstance(value, int):
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise ConversionError(f"integer out of range: {value}")
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise ConversionError(f"unsupported parameter type: {type(value).__name__}")


def _bind(query: str, params: Sequence[Any]) -> Sequence[Any] | dict[str, Any]:
    values = [_to_sql(value) for value in params]
    if _NUMBERED_PARAM.search(query):
        return {str(number): value for number, value in enumerate(values, start=1)}
    return values


class SqliteDatabase(RelationalDatabase):
    """SQLite database file (or ``:memory:``) shared by pooled connections."""

    def __init__(self, pool: _ConnectionPool) -> None:
        self._pool = pool
        self._lock = threading.RLock()
        self._transaction: sqlite3.Connection | None = None

    def placeholders(self, keys: Sequence[str]) -> list[str]:
        return [f"${number}" for number in range(1, len(keys) + 1)]

    @classmethod
    def connect(cls, config: DatabaseConfig) -> SqliteDatabase:
        try:
            pool = _ConnectionPool(config.database_name, config.max_size)
        except (ValueError, sqlite3.Error) as exc:
            raise DbConnectionError(str(exc)) from exc
        return cls(pool)

    def close(self) -> None:
        self._pool.close_idle()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._transaction is not None:
                yield self._transaction
                return
            try:
                conn = self._pool.acquire()
            except _POOL_ERRORS as exc:
                raise DbConnectionError(str(exc)) from exc
            try:
                yield conn
            finally:
                self._pool.release(conn)

    def ping(self) -> None:
        try:
            conn = self._pool.acquire()
        except _POOL_ERRORS as exc:
            raise DbConnectionError(str(exc)) from exc
        try:
            conn.execute("SELECT 1").fetchall()
        except sqlite3.Error as exc:
            raise DbConnectionError(str(exc)) from exc
        finally:
            self._pool.release(conn)

    def begin_transaction(self) -> None:
        with self._lock:
            if self._transaction is not None:
                raise TransactionError("a transaction is already in progress")
            try:
                conn = self._pool.acquire()
            except _POOL_ERRORS as exc:
                raise TransactionError(str(exc)) from exc
            try:
                conn.execute("BEGIN TRANSACTION")
            except sqlite3.Error as exc:
                self._pool.release(conn)
                raise TransactionError(str(exc)) from exc
            self._transaction = conn

    def _finish(self, statement: str) -> None:
        with self._lock:
            conn, self._transaction = self._transaction, None
            if conn is None:
                return
            try:
                conn.execute(statement)
            except sqlite3.Error as exc:
                raise TransactionError(str(exc)) from exc
            finally:
                self._pool.release(conn)

    def commit(self) -> None:
        self._finish("COMMIT")

    def rollback(self) -> None:
        self._finish("ROLLBACK")

    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        bound = _bind(query, params)
        with self._connection() as conn:
            try:
                cursor = conn.execute(query, bound)
            except sqlite3.OperationalError as exc:
                raise ConversionError(str(exc)) from exc
            except sqlite3.Error as exc:
                raise QueryError(str(exc)) from exc
            try:
                return max(cursor.rowcount, 0)
            finally:
                cursor.close()

    def query(self, query: str, params: Sequence[Any] = ()) -> list[Row]:
        bound = _bind(query, params)
        with self._connection() as conn:
            try:
                cursor = conn.execute(query, bound)
                records = cursor.fetchall()
            except sqlite3.Error as exc:
                raise QueryError(str(exc)) from exc
            columns = [description[0] for description in cursor.description or ()]
            cursor.close()
        return [Row(columns=list(columns), values=list(record)) for record in records]

    def query_one(self, query: str, params: Sequence[Any] = ()) -> Row | None:
        rows = self.query(query, params)
        return rows[-1] if rows else None

    def get_connection(self) -> Connection:
        try:
            conn = self._pool.acquire()
        except _POOL_ERRORS as exc:
            raise PoolError(str(exc)) from exc
        self._pool.release(conn)
        return Connection()

    def release_connection(self, conn: Connection) -> None:
        """Accept back a handle from :meth:`get_connection`; pooled connections are already idle."""
        if not isinstance(conn, Connection):
            raise PoolError(f"not a pooled connection: {type(conn).__name__}")