"""MySQL backend built on a small pool of PyMySQL connections."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager, suppress
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import pymysql

from bootdao.common import (
    ConversionError,
    DatabaseConfig,
    DbConnectionError,
    PoolError,
    QueryError,
    QueryErrorKind,
    Row,
    TransactionError,
)
from bootdao.database import Connection, RelationalDatabase

_POOL_TIMEOUT = 30.0
_FOREIGN_KEY_CODES = frozenset({1451, 1452})
_UNIQUE_CODE = 1062
_NOT_NULL_CODE = 1048


class _PoolTimeout(Exception):
    """No pooled connection became free in time."""


_CONNECTION_FAILURES = (pymysql.err.MySQLError, OSError)
_POOL_ERRORS = (_PoolTimeout, *_CONNECTION_FAILURES)
_STATEMENT_FAILURES = (pymysql.err.MySQLError, TypeError, ValueError)


def _close_quietly(conn: Any) -> None:
    with suppress(Exception):
        conn.close()


class _ConnectionPool:
    """Hands out at most ``max_size`` connections, checking idle ones before reuse."""

    def __init__(
        self,
        factory: Callable[[], Any],
        max_size: int,
        timeout: float = _POOL_TIMEOUT,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self._factory = factory
        self._max_size = max_size
        self._timeout = timeout
        self._idle: list[Any] = []
        self._open = 0
        self._cond = threading.Condition()
        self.release(self.acquire())

    def acquire(self) -> Any:
        with self._cond:
            available = self._cond.wait_for(
                lambda: self._idle or self._open < self._max_size, self._timeout
            )
            if not available:
                raise _PoolTimeout("timed out waiting for a connection")
            if self._idle:
                conn = self._idle.pop()
            else:
                conn = None
                self._open += 1
        if conn is not None:
            try:
                conn.ping(reconnect=False)
                return conn
            except _CONNECTION_FAILURES:
                _close_quietly(conn)
        try:
            return self._factory()
        except BaseException:
            with self._cond:
                self._open -= 1
                self._cond.notify()
            raise

    def release(self, conn: Any) -> None:
        with self._cond:
            self._idle.append(conn)
            self._cond.notify()

    def close_idle(self) -> None:
        with self._cond:
            idle, self._idle = self._idle, []
            self._open -= len(idle)
            self._cond.notify_all()
        for conn in idle:
            _close_quietly(conn)


def _translate(query: str) -> str:
    """Turn ``?`` markers outside quoted text into the driver's ``%s`` markers."""
    out: list[str] = []
    quote: str | None = None
    escaped = False
    for char in query:
        if char == "%":
            out.append("%%")
            continue
        if quote is not None:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\" and quote != "`":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "'\"`":
            quote = char
            out.append(char)
        elif char == "?":
            out.append("%s")
        else:
            out.append(char)
    return "".join(out)


def _to_mysql(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, str, bytes)):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    raise ConversionError(f"unsupported parameter type: {type(value).__name__}")


def _from_mysql(value: Any) -> Any:
    if value is None or isinstance(value, (int, float, bytes)):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, Decimal):
        return str(value).encode("ascii")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raise ConversionError("Unsupported MySQL type")


def _column_name(name: Any) -> str:
    if isinstance(name, (bytes, bytearray)):
        return bytes(name).decode("utf-8", "replace")
    return str(name)


def _execute_error(exc: Exception) -> QueryError:
    args = getattr(exc, "args", ())
    if isinstance(exc, pymysql.err.MySQLError) and len(args) >= 2 and isinstance(args[0], int):
        code, message = args[0], str(args[1])
        if code in _FOREIGN_KEY_CODES:
            return QueryError(message, QueryErrorKind.FOREIGN_KEY_VIOLATION)
        if code == _UNIQUE_CODE:
            return QueryError(message, QueryErrorKind.UNIQUE_VIOLATION)
        if code == _NOT_NULL_CODE:
            return QueryError(message, QueryErrorKind.NOT_NULL_VIOLATION)
        return QueryError(f"code: {code}, message: {message}")
    return QueryError(f"message: {exc}")


def _run(conn: Any, statement: str) -> None:
    cursor = conn.cursor()
    try:
        cursor.execute(statement)
    finally:
        cursor.close()


class MySqlDatabase(RelationalDatabase):
    """MySQL server reached through pooled connections."""

    def __init__(self, pool: _ConnectionPool) -> None:
        self._pool = pool
        self._lock = threading.RLock()
        self._transaction: Any = None

    def placeholders(self, keys: Sequence[str]) -> list[str]:
        return ["?" for _ in keys]

    @classmethod
    def connect(cls, config: DatabaseConfig) -> MySqlDatabase:
        def open_connection() -> Any:
            return pymysql.connect(
                host=config.host,
                port=config.port,
                user=config.username,
                password=config.password,
                database=config.database_name,
                charset="utf8mb4",
                use_unicode=False,
                autocommit=True,
            )

        try:
            pool = _ConnectionPool(open_connection, config.max_size)
        except (ValueError, *_POOL_ERRORS) as exc:
            raise DbConnectionError(str(exc)) from exc
        return cls(pool)

    def close(self) -> None:
        self._pool.close_idle()

    @contextmanager
    def _connection(self) -> Iterator[Any]:
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
            _run(conn, "SELECT 1")
        except _CONNECTION_FAILURES as exc:
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
                _run(conn, "START TRANSACTION")
            except _CONNECTION_FAILURES as exc:
                self._pool.release(conn)
                raise TransactionError(str(exc)) from exc
            self._transaction = conn

    def _finish(self, statement: str) -> None:
        with self._lock:
            conn, self._transaction = self._transaction, None
            if conn is None:
                return
            try:
                _run(conn, statement)
            except _CONNECTION_FAILURES as exc:
                raise TransactionError(str(exc)) from exc
            finally:
                self._pool.release(conn)

    def commit(self) -> None:
        self._finish("COMMIT")

    def rollback(self) -> None:
        self._finish("ROLLBACK")

    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        statement = _translate(query)
        args = tuple(_to_mysql(value) for value in params)
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(statement, args)
                return max(cursor.rowcount, 0)
            except _STATEMENT_FAILURES as exc:
                raise _execute_error(exc) from exc
            finally:
                cursor.close()

    def query(self, query: str, params: Sequence[Any] = ()) -> list[Row]:
        statement = _translate(query)
        args = tuple(_to_mysql(value) for value in params)
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(statement, args)
                records = cursor.fetchall()
                description = cursor.description or ()
            except _STATEMENT_FAILURES as exc:
                raise QueryError(str(exc)) from exc
            finally:
                cursor.close()
        columns = [_column_name(column[0]) for column in description]
        return [
            Row(columns=list(columns), values=[_from_mysql(value) for value in record])
            for record in records
        ]

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
        return None