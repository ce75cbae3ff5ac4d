"""Shared pytest fixtures for recordfsm tests.

Provides a temporary file-backed database with the test schema bound to
every Record class, and an in-memory database for the transaction tests.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from record_models import SCHEMA_SQL
from recordfsm import Database, Record


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path: Path) -> Database:
    """Create a temporary SQLite database (file-based for WAL support) bound to Record."""
    database = Database(db_path, schema_sql=SCHEMA_SQL)
    Record.use(database)
    yield database
    Record.use(None)
    database.close()


@pytest.fixture
def in_memory_db() -> Database:
    """Create an in-memory database with a single scratch table."""
    database = Database(":memory:", schema_sql="CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT);")
    yield database
    database.close()
