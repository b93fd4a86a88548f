"""Shared configuration, error types and result rows."""

from __future__ import annotations

import enum
import os
import re
from dataclasses import dataclass, field
from typing import Any

_NUMBER = re.compile(r"\+?[0-9]+")


def _env_number(name: str, default: str, label: str, upper: int) -> int:
    raw = os.environ.get(name, default)
    if not _NUMBER.fullmatch(raw):
        raise ValueError(f"{label} must be a number")
    number = int(raw)
    if number > upper:
        raise ValueError(f"{label} must be a number")
    return number


def _env_host() -> str:
    return os.environ.get("BOOTRUST_DB_HOST", "localhost")


def _env_port() -> int:
    return _env_number("BOOTRUST_DB_PORT", "3306", "DB_PORT", 0xFFFF)


def _env_username() -> str:
    return os.environ.get("BOOTRUST_DB_USERNAME", "root")


def _env_password() -> str:
    password = "password"
    return os.environ.get("BOOTRUST_DB_PASSWORD", password)


def _env_database_name() -> str:
    return os.environ.get("BOOTRUST_DB_DATABASE", "bootrust_default_db")


def _env_max_size() -> int:
    return _env_number("DB_MAX_SIZE", "20", "DB_MAX_SIZE", 0xFFFFFFFF)


@dataclass
class DatabaseConfig:
    """Connection settings; unset fields fall back to environment variables."""

    host: str = field(default_factory=_env_host)
    port: int = field(default_factory=_env_port)
    username: str = field(default_factory=_env_username)
    password: str = field(default_factory=_env_password, repr=False)
    database_name: str = field(default_factory=_env_database_name)
    max_size: int = field(default_factory=_env_max_size)

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Build a configuration entirely from the environment and defaults."""
        return cls()


class QueryErrorKind(enum.Enum):
    """Category of a failed query; the value is the label used in messages."""

    SYNTAX_ERROR = "syntax  error"
    FOREIGN_KEY_VIOLATION = "ForeignKeyViolation"
    UNIQUE_VIOLATION = "UniqueViolation"
    NOT_NULL_VIOLATION = "NotNullViolation"
    CHECK_VIOLATION = "CheckViolation"
    EXCLUSION_VIOLATION = "ExclusionViolation"
    OTHER = "Pool error"


class DbError(Exception):
    """Base class of every database error."""

    prefix = "Database error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.prefix}: {self.message}"


class DbConnectionError(DbError):
    """A connection could not be obtained or used."""

    prefix = "Connection error"


class QueryError(DbError):
    """A statement failed while running."""

    prefix = "Query error"

    def __init__(self, message: str, kind: QueryErrorKind = QueryErrorKind.OTHER) -> None:
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.prefix}: {self.kind.value}: {self.message}"


class TransactionError(DbError):
    """Starting, committing or rolling back a transaction failed."""

    prefix = "Transaction error"


class PoolError(DbError):
    """The connection pool could not hand out a connection."""

    prefix = "Pool error"


class ConversionError(DbError):
    """A value could not be converted to or from the database."""

    prefix = "Conversion error"


@dataclass
class Row:
    """One result row: column names and their values in the same order."""

    columns: list[str]
    values: list[Any]

    def to_table(self) -> dict[str, Any]:
        """Map each column name to its value, keeping column order."""
        return dict(zip(self.columns, self.values, strict=True))