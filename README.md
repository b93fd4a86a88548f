# bootdao

A small data access layer for Python. Describe a table with a plain
dataclass, point a `Dao` at a database and get create, find, update and
delete without writing the SQL yourself.

Two backends are included:

- `bootdao.sqlite.SqliteDatabase`, which uses the standard library's `sqlite3`
- `bootdao.mysql.MySqlDatabase`, which uses `pymysql`

Both keep a small pool of connections (at most `max_size` of them).

## Installation

```
pip install bootdao
```

## Configuration

`bootdao.common.DatabaseConfig` is a dataclass with the fields `host`,
`port`, `username`, `password`, `database_name` and `max_size`. Any field you
do not pass is read from the environment, falling back to a default when the
variable is not set. `DatabaseConfig.from_env()` does this for every field:

| Variable                | Default               |
|-------------------------|-----------------------|
| `BOOTRUST_DB_HOST`      | `localhost`           |
| `BOOTRUST_DB_PORT`      | `3306`                |
| `BOOTRUST_DB_USERNAME`  | `root`                |
| `BOOTRUST_DB_PASSWORD`  | `password`            |
| `BOOTRUST_DB_DATABASE`  | `bootrust_default_db` |
| `DB_MAX_SIZE`           | `20`                  |

A port or pool size that is not a whole number in range raises `ValueError`.

For SQLite, the database name is the path of the file; `:memory:` gives an
in-memory database.

`bootdao.autoconfig.auto_config(backend)` connects to `"mysql"` or
`"sqlite"` using `DatabaseConfig.from_env()`; any other name raises
`ValueError`.

## Raw queries

```python
from bootdao.common import DatabaseConfig
from bootdao.sqlite import SqliteDatabase

db = SqliteDatabase.connect(DatabaseConfig(database_name=":memory:"))
db.execute("CREATE TABLE test (id INTEGER PRIMARY KEY, name TEXT, age INTEGER)", [])
db.execute("INSERT INTO test (name, age) VALUES ($1, $2)", ["Alice", 25])

for row in db.query("SELECT * FROM test", []):
    print(row.columns, row.values, row.to_table())

print(db.query_one("SELECT * FROM test WHERE name = $1", ["Bob"]))  # None
```

`execute` returns the number of affected rows, `query` a list of
`bootdao.common.Row` objects, and `query_one` the last row of the result or
`None`. `ping()` checks that the database answers, and `close()` closes the
idle pooled connections.

`db.placeholders(keys)` returns the parameter markers the backend expects:
`$1, $2, ...` for SQLite and `?` for MySQL.

Values read back differ between backends: SQLite returns text as `str`,
while MySQL returns text (and decimals) as `bytes` and date-times as
timezone-aware UTC `datetime` objects. SQLite stores a `datetime` parameter
as ISO 8601 text.

## Entities and DAOs

```python
from dataclasses import dataclass

from bootdao.dao import Dao


@dataclass
class User:
    id: int
    username: str
    email: str
    created_at: str
    active: int


class UserDao(Dao):
    entity_type = User
    table_name = "users"
    primary_key_column = "id"


dao = UserDao(db)
dao.create(User(1, "test_user", "test@example.com", "2024-01-01", 1))

user = dao.find_by_id(1)
user.email = "updated@example.com"
dao.update(user)

dao.find_all()
dao.find_by_condition(["username ="], ["test_user"])
dao.delete(1)
```

Instead of subclassing, the same settings can be passed to the constructor:
`Dao(db, entity_type=User, table_name="users", primary_key_column="id")`.
`primary_key_column` defaults to `"id"`.

The columns of the table must be in the same order as the fields of the
entity, because `create` inserts values positionally.

When rows are turned back into entities, values are adapted to the field
types: `bytes` become `str` for `str` fields, integers become `float` or
`bool` where the field asks for it, and `datetime` fields accept ISO 8601
text or a Unix timestamp. A missing required field raises `ConversionError`.
Entities may also be plain mappings on the way in; a non-dataclass
`entity_type` is built by passing the row's columns as keyword arguments.

The helpers `entity_to_map`, `entity_to_keys`, `entity_to_values`,
`convert_entity_to_table`, `convert_row_to_entity` and
`convert_rows_to_entities` are public as well.

## Transactions

```python
dao.begin_transaction()
try:
    dao.create(user)
    dao.commit()
except Exception:
    dao.rollback()
    raise
```

While a transaction is open, every statement on that database, from any DAO
that shares it, runs on the transaction's connection. Starting a second
transaction before the first ends raises `TransactionError`; `commit` and
`rollback` do nothing when no transaction is open.

## Errors

Every failure raises a subclass of `bootdao.common.DbError`:
`DbConnectionError`, `QueryError`, `TransactionError`, `PoolError` or
`ConversionError`. A `QueryError` carries a `kind`, a `QueryErrorKind`.
The MySQL backend sets it to `UNIQUE_VIOLATION`, `FOREIGN_KEY_VIOLATION` or
`NOT_NULL_VIOLATION` for those constraint failures and to `OTHER`
otherwise; the SQLite backend always reports `OTHER`. With SQLite, a
statement that fails to prepare or run in `execute` (for example a syntax
error) raises `ConversionError`.

## What it does not do

There is no PostgreSQL backend and no asynchronous interface. Tables are
not created or migrated for you: create them with `execute` before using a
`Dao`.