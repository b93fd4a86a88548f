from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, NamedTuple
from unittest.mock import patch

import pymysql
import pytest

from bootdao.common import (
    ConversionError,
    DatabaseConfig,
    DbConnectionError,
    PoolError,
    QueryError,
    QueryErrorKind,
    TransactionError,
)
from bootdao.database import Connection
from bootdao.mysql import MySqlDatabase


class Statement(NamedTuple):
    connection: int
    query: str
    args: Any


class FakeServer:
    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.statements: list[Statement] = []
        self.results: list[tuple[list[str], list[tuple], int]] = []
        self.fail_next: Exception | None = None
        self.connect_error: Exception | None = None
        self.ping_fails = False
        self.connect_kwargs: list[dict[str, Any]] = []

    def connect(self, **kwargs: Any) -> FakeConnection:
        self.connect_kwargs.append(kwargs)
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection(self, len(self.connections))
        self.connections.append(conn)
        return conn


class FakeCursor:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.description = None
        self.rowcount = -1
        self._rows: list[tuple] = []

    def execute(self, query: str, args: Any = None) -> int:
        server = self.conn.server
        server.statements.append(Statement(self.conn.index, query, args))
        if server.fail_next is not None:
            error, server.fail_next = server.fail_next, None
            raise error
        columns, rows, count = server.results.pop(0) if server.results else ([], [], 1)
        self.description = tuple((name, None) for name in columns) or None
        self._rows = list(rows)
        self.rowcount = count
        return count

    def fetchall(self) -> tuple:
        return tuple(self._rows)

    def close(self) -> None:
        pass


class FakeConnection:
    def __init__(self, server: FakeServer, index: int) -> None:
        self.server = server
        self.index = index
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def ping(self, reconnect: bool = True) -> None:
        if self.server.ping_fails:
            raise pymysql.err.OperationalError(2006, "MySQL server has gone away")

    def close(self) -> None:
        self.closed = True


def make_config(max_size: int = 10) -> DatabaseConfig:
    password = "password"
    return DatabaseConfig(
        host="localhost",
        port=3306,
        username="root",
        password=password,
        database_name="test",
        max_size=max_size,
    )


@pytest.fixture
def server():
    fake = FakeServer()
    with patch("pymysql.connect", side_effect=fake.connect):
        yield fake


@pytest.fixture
def db(server):
    return MySqlDatabase.connect(make_config())


def test_placeholders_are_question_marks(db):
    assert db.placeholders(["id", "name", "age"]) == ["?", "?", "?"]
    assert db.placeholders([]) == []


def test_connect_passes_configuration(server):
    db = MySqlDatabase.connect(make_config())
    assert db.placeholders(["id"]) == ["?"]
    kwargs = server.connect_kwargs[0]
    assert kwargs["host"] == "localhost"
    assert kwargs["port"] == 3306
    assert kwargs["user"] == "root"
    assert kwargs["database"] == "test"
    assert kwargs["use_unicode"] is False


def test_connect_failure_raises_connection_error(server):
    server.connect_error = pymysql.err.OperationalError(2003, "Can't connect")
    with pytest.raises(DbConnectionError):
        MySqlDatabase.connect(make_config())


def test_connect_rejects_empty_pool(server):
    with pytest.raises(DbConnectionError):
        MySqlDatabase.connect(make_config(max_size=0))


def test_execute_returns_affected_rows_and_translates_markers(db, server):
    server.results.append(([], [], 1))
    affected = db.execute(
        "INSERT INTO users (name, age) VALUES (?, ?)", ["Alice", 30]
    )
    assert affected == 1
    statement = server.statements[-1]
    assert "?" not in statement.query
    assert statement.query.count("%s") == 2
    assert statement.args == ("Alice", 30)


def test_markers_inside_quotes_and_percent_signs_are_kept(db, server):
    affected = db.execute("SELECT '?' FROM t WHERE name LIKE 'a%' AND id = ?", [1])
    assert affected == 1
    query = server.statements[-1].query
    assert "'?'" in query
    assert "'a%%'" in query
    assert query.count("%s") == 1


def test_parameters_are_converted(db, server):
    moment = datetime(2024, 5, 1, 12, 30, 15, 250, tzinfo=timezone(timedelta(hours=2)))
    db.execute("INSERT INTO t VALUES (?, ?, ?, ?)", [True, None, b"\x00\x01", moment])
    flag, missing, blob, stored = server.statements[-1].args
    assert flag == 1
    assert missing is None
    assert blob == b"\x00\x01"
    assert stored.tzinfo is None
    assert stored == moment.astimezone(timezone.utc).replace(tzinfo=None)


def test_unsupported_parameter_raises_conversion_error(db):
    with pytest.raises(ConversionError):
        db.execute("INSERT INTO t VALUES (?)", [{1, 2}])


def test_query_returns_rows(db, server):
    created = datetime(2024, 1, 2, 3, 4, 5)
    server.results.append(
        (["id", "name", "age", "created_at"], [(1, b"Alice", 30, created)], 1)
    )
    rows = db.query("SELECT id, name, age, created_at FROM users")
    assert len(rows) == 1
    assert rows[0].columns == ["id", "name", "age", "created_at"]
    assert rows[0].values[1] == b"Alice"
    assert rows[0].values[2] == 30
    assert rows[0].values[3] == created.replace(tzinfo=timezone.utc)


def test_query_normalises_driver_values(db, server):
    server.results.append(
        (["text", "price", "day"], [("Bob", Decimal("9.50"), date(2024, 1, 2))], 1)
    )
    row = db.query_one("SELECT text, price, day FROM t")
    assert row.values == [b"Bob", b"9.50", datetime(2024, 1, 2, tzinfo=timezone.utc)]


def test_unsupported_result_type_raises_conversion_error(db, server):
    server.results.append((["span"], [(timedelta(hours=1),)], 1))
    with pytest.raises(ConversionError):
        db.query("SELECT span FROM t")


def test_query_one_returns_last_row_or_none(db, server):
    server.results.append((["id", "name"], [(1, b"Alice"), (2, b"Bob")], 2))
    row = db.query_one("SELECT id, name FROM users")
    assert row.values == [2, b"Bob"]
    server.results.append((["id", "name"], [], 0))
    assert db.query_one("SELECT * FROM users WHERE name = ?", ["Charlie"]) is None


def test_datetime_round_trip(db, server):
    now = datetime.now(timezone.utc)
    db.execute("INSERT INTO users (created_at) VALUES (?)", [now])
    stored = server.statements[-1].args[0]
    server.results.append((["created_at"], [(stored,)], 1))
    row = db.query_one("SELECT created_at FROM users")
    assert row.values[0] == now


@pytest.mark.parametrize(
    "code, kind",
    [
        (1451, QueryErrorKind.FOREIGN_KEY_VIOLATION),
        (1452, QueryErrorKind.FOREIGN_KEY_VIOLATION),
        (1062, QueryErrorKind.UNIQUE_VIOLATION),
        (1048, QueryErrorKind.NOT_NULL_VIOLATION),
    ],
)
def test_constraint_errors_are_classified(db, server, code, kind):
    server.fail_next = pymysql.err.IntegrityError(code, "constraint failed")
    with pytest.raises(QueryError) as info:
        db.execute("INSERT INTO t VALUES (?)", [1])
    assert info.value.kind is kind
    assert info.value.message == "constraint failed"


def test_other_server_errors_carry_code(db, server):
    server.fail_next = pymysql.err.ProgrammingError(1064, "bad syntax")
    with pytest.raises(QueryError) as info:
        db.execute("INSERT INTO t VALUES (?)", [1])
    assert info.value.kind is QueryErrorKind.OTHER
    assert info.value.message == "code: 1064, message: bad syntax"


def test_non_server_errors_are_wrapped(db, server):
    server.fail_next = TypeError("not enough arguments")
    with pytest.raises(QueryError) as info:
        db.execute("INSERT INTO t VALUES (?)", [1])
    assert info.value.message.startswith("message: ")


def test_query_failure_raises_query_error(db, server):
    server.fail_next = pymysql.err.ProgrammingError(1146, "no such table")
    with pytest.raises(QueryError):
        db.query("SELECT * FROM missing")


def test_transaction_rollback_uses_one_connection(db, server):
    db.begin_transaction()
    affected = db.execute("INSERT INTO users (name) VALUES (?)", ["Alice"])
    db.rollback()
    assert affected == 1
    queries = [statement.query for statement in server.statements]
    assert queries[0] == "START TRANSACTION"
    assert queries[-1] == "ROLLBACK"
    assert len(queries) == 3
    assert {statement.connection for statement in server.statements} == {0}


def test_transaction_commit(db, server):
    db.begin_transaction()
    affected = db.execute("INSERT INTO users (name) VALUES (?)", ["Bob"])
    db.commit()
    assert affected == 1
    assert server.statements[-1] == Statement(0, "COMMIT", None)


def test_ping_during_transaction_uses_another_connection(db, server):
    db.begin_transaction()
    assert db.execute("INSERT INTO users (name) VALUES (?)", ["Carol"]) == 1
    assert server.statements[-1].connection == 0
    db.ping()
    assert server.statements[-1] == Statement(1, "SELECT 1", None)
    db.commit()
    assert server.statements[-1] == Statement(0, "COMMIT", None)


def test_commit_and_rollback_without_transaction_do_nothing(db, server):
    db.commit()
    db.rollback()
    assert db.execute("DELETE FROM users", []) == 1
    assert [statement.query for statement in server.statements] == ["DELETE FROM users"]


def test_nested_transaction_is_rejected(db):
    db.begin_transaction()
    with pytest.raises(TransactionError):
        db.begin_transaction()


def test_failed_begin_releases_connection(db, server):
    server.fail_next = pymysql.err.OperationalError(1205, "lock wait timeout")
    with pytest.raises(TransactionError):
        db.begin_transaction()
    db.begin_transaction()
    assert server.statements[-1] == Statement(0, "START TRANSACTION", None)
    assert len(server.connections) == 1


def test_ping_runs_select(db, server):
    db.ping()
    assert server.statements == [Statement(0, "SELECT 1", None)]
    server.results.append((["n"], [(1,)], 1))
    row = db.query_one("SELECT 1 AS n")
    assert row.values == [1]


def test_ping_failure_raises_connection_error(db, server):
    server.fail_next = pymysql.err.OperationalError(2013, "lost connection")
    with pytest.raises(DbConnectionError):
        db.ping()


def test_stale_connection_is_replaced(db, server):
    server.ping_fails = True
    affected = db.execute("DELETE FROM users WHERE id = ?", [1])
    assert affected == 1
    assert server.connections[0].closed is True
    assert server.statements[-1].connection == 1


def test_get_connection(db, server):
    assert db.get_connection() == Connection()
    assert db.release_connection(Connection()) is None
    assert len(server.connections) == 1


def test_get_connection_failure_raises_pool_error(db, server):
    server.ping_fails = True
    server.connect_error = pymysql.err.OperationalError(2003, "Can't connect")
    with pytest.raises(PoolError):
        db.get_connection()


def test_close_closes_idle_connections(db, server):
    db.close()
    assert server.connections[0].closed is True
    affected = db.execute("DELETE FROM users WHERE id = ?", [1])
    assert affected == 1
    assert server.statements[-1].connection == 1
    assert len(server.connections) == 2