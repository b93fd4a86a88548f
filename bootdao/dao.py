"""Generic data access objects mapping dataclass entities to table rows."""

from __future__ import annotations

import dataclasses
import types
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar, Union, get_args, get_origin

from bootdao.common import ConversionError, Row
from bootdao.database import RelationalDatabase

T = TypeVar("T")

_UNION_TYPES: tuple[Any, ...] = (Union, types.UnionType)

_NAMED_TYPES: dict[str, Any] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "bytes": bytes,
    "datetime": datetime,
    "datetime.datetime": datetime,
    "Any": Any,
    "typing.Any": Any,
}


def _resolve(annotation: Any) -> Any:
    """Turn a textual field annotation into the type it names, where known."""
    if not isinstance(annotation, str):
        return annotation
    text = annotation.strip()
    for prefix in ("Optional[", "typing.Optional["):
        if text.startswith(prefix) and text.endswith("]"):
            return _resolve(text[len(prefix):-1])
    parts = [part.strip() for part in text.split("|")]
    options = [part for part in parts if part != "None"]
    if len(parts) > 1 and len(options) == 1:
        return _resolve(options[0])
    return _NAMED_TYPES.get(text, Any)


def _decode(value: bytes | bytearray | memoryview) -> str:
    try:
        return bytes(value).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ConversionError(f"invalid UTF-8 text: {exc}") from exc


def _to_datetime(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ConversionError(f"invalid timestamp: {value}") from exc
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = _decode(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise ConversionError(f"invalid date-time: {value!r}") from exc
    return value


def _coerce(value: Any, annotation: Any) -> Any:
    """Adapt a value read from a database to the field's declared type."""
    if value is None or annotation is Any or isinstance(annotation, str):
        return value
    if get_origin(annotation) in _UNION_TYPES:
        options = [arg for arg in get_args(annotation) if arg is not type(None)]
        return _coerce(value, options[0]) if len(options) == 1 else value
    if annotation is str and isinstance(value, (bytes, bytearray, memoryview)):
        return _decode(value)
    if annotation is bytes and isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if annotation is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if annotation is bool and isinstance(value, int) and not isinstance(value, bool):
        return bool(value)
    if annotation is datetime:
        return _to_datetime(value)
    return value


def _field_types(entity_type: type) -> dict[str, Any]:
    return {field.name: _resolve(field.type) for field in dataclasses.fields(entity_type)}


class Dao(Generic[T]):
    """CRUD operations for one entity type stored in one table.

    The entity type, table name and primary key column are given either to
    the constructor or as class attributes of a subclass.
    """

    entity_type: type[T]
    table_name: str
    primary_key_column: str = "id"

    def __init__(
        self,
        database: RelationalDatabase,
        entity_type: type[T] | None = None,
        table_name: str | None = None,
        primary_key_column: str | None = None,
    ) -> None:
        self.database = database
        if entity_type is not None:
            self.entity_type = entity_type
        if table_name is not None:
            self.table_name = table_name
        if primary_key_column is not None:
            self.primary_key_column = primary_key_column
        for name in ("entity_type", "table_name"):
            if not hasattr(self, name):
                raise TypeError(f"{type(self).__name__} needs a {name}")

    def placeholders(self, keys: Sequence[str]) -> list[str]:
        """Return the database's parameter placeholders for ``keys``."""
        return self.database.placeholders(keys)

    def convert_row_to_entity(self, row: Row) -> T:
        """Build an entity from a result row."""
        table = row.to_table()
        entity_type = self.entity_type
        if not dataclasses.is_dataclass(entity_type):
            try:
                return entity_type(**table)
            except TypeError as exc:
                raise ConversionError(str(exc)) from exc
        hints = _field_types(entity_type)
        kwargs: dict[str, Any] = {}
        for field in dataclasses.fields(entity_type):
            if not field.init:
                continue
            if field.name in table:
                kwargs[field.name] = _coerce(table[field.name], hints.get(field.name, Any))
            elif (
                field.default is dataclasses.MISSING
                and field.default_factory is dataclasses.MISSING
            ):
                raise ConversionError(f"missing field `{field.name}`")
        try:
            return entity_type(**kwargs)
        except (TypeError, ValueError) as exc:
            raise ConversionError(str(exc)) from exc

    def convert_rows_to_entities(self, rows: Sequence[Row]) -> list[T]:
        """Build one entity per row, in row order."""
        return [self.convert_row_to_entity(row) for row in rows]

    def entity_to_map(self, entity: T) -> list[tuple[str, Any]]:
        """Return the entity's (column, value) pairs in field order."""
        if dataclasses.is_dataclass(entity) and not isinstance(entity, type):
            return [
                (field.name, getattr(entity, field.name))
                for field in dataclasses.fields(entity)
            ]
        if isinstance(entity, Mapping):
            return [(str(key), value) for key, value in entity.items()]
        raise ConversionError(f"cannot map entity of type {type(entity).__name__}")

    def convert_entity_to_table(self, entity: T) -> dict[str, Any]:
        """Return the entity as a column-to-value dictionary."""
        return dict(self.entity_to_map(entity))

    def entity_to_values(self, entity: T) -> list[Any]:
        """Return the entity's values in column order."""
        return [value for _, value in self.entity_to_map(entity)]

    def entity_to_keys(self, entity: T) -> list[str]:
        """Return the entity's column names in order."""
        return [key for key, _ in self.entity_to_map(entity)]

    def create(self, entity: T) -> int:
        """Insert the entity and return the number of affected rows."""
        values = self.entity_to_values(entity)
        marks = self.placeholders(self.entity_to_keys(entity))
        query = f"INSERT INTO {self.table_name} VALUES ({', '.join(marks)})"
        return self.database.execute(query, values)

    def find_by_id(self, id: Any) -> T | None:
        """Return the entity whose primary key equals ``id``, or None."""
        pk = self.primary_key_column
        mark = self.placeholders([pk])[0]
        query = f"SELECT * FROM {self.table_name} WHERE {pk} = {mark}"
        row = self.database.query_one(query, [id])
        return None if row is None else self.convert_row_to_entity(row)

    def find_all(self) -> list[T]:
        """Return every entity in the table."""
        rows = self.database.query(f"SELECT * FROM {self.table_name}", [])
        return self.convert_rows_to_entities(rows)

    def update(self, entity: T) -> int:
        """Update the row matching the entity's primary key."""
        pk = self.primary_key_column
        pairs = self.entity_to_map(entity)
        if not pairs:
            raise ConversionError("entity has no columns to update")
        values: list[Any] = []
        assignments: list[str] = []
        primary_value: Any = None
        has_primary = False
        for column, value in pairs:
            if column == pk:
                primary_value, has_primary = value, True
                continue
            position = len(assignments)
            mark = self.placeholders([column] * (position + 1))[position]
            values.append(value)
            assignments.append(f"{column} = {mark}")
        if has_primary:
            values.append(primary_value)
        if not values:
            raise ConversionError("entity has no columns to update")
        pk_mark = self.placeholders([pk] * len(values))[-1]
        query = (
            f"UPDATE {self.table_name} SET {', '.join(assignments)} "
            f"WHERE {pk} = {pk_mark}"
        )
        return self.database.execute(query, values)

    def delete(self, id: Any) -> int:
        """Delete the row whose primary key equals ``id``."""
        pk = self.primary_key_column
        mark = self.placeholders([pk])[0]
        query = f"DELETE FROM {self.table_name} WHERE {pk} = {mark}"
        return self.database.execute(query, [id])

    def find_by_condition(self, conditions: Sequence[str], params: Sequence[Any]) -> list[T]:
        """Return entities matching all conditions such as ``"name ="``."""
        conditions = list(conditions)
        marks = self.placeholders(conditions)
        where = " AND ".join(f"{condition} {mark}" for condition, mark in zip(conditions, marks))
        query = f"SELECT * FROM {self.table_name} WHERE {where}"
        rows = self.database.query(query, list(params))
        return self.convert_rows_to_entities(rows)

    def begin_transaction(self) -> None:
        """Start a transaction on the underlying database."""
        self.database.begin_transaction()

    def commit(self) -> None:
        """Commit the underlying database's transaction."""
        self.database.commit()

    def rollback(self) -> None:
        """Roll back the underlying database's transaction."""
        self.database.rollback()