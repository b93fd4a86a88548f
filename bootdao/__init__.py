"""Data access objects over SQLite and MySQL, driven by plain entity classes."""

__version__ = "0.1.0"

__all__ = ["autoconfig", "common", "dao", "database", "mysql", "sqlite"]