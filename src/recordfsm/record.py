"""Minimal SQLite-backed record base class.

Provides what a state machine needs from a persistence collaborator:
attribute access, a new-record predicate, validation, an ordered list of
pre-creation hooks, nestable transactions, reload, and equality filters.
It is not an ORM: there are no relations, no migrations, no dirty tracking.

Usage:
    class Gate(Record):
        __table__ = "gates"
        __columns__ = ("name", "state")

    Record.use(Database("data/records.db"))
    gate = Gate.create(name="north")
    Gate.where(state="opened").count()
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator, Mapping
from contextlib import AbstractContextManager
from typing import Any, ClassVar, TypeVar

from recordfsm.database import Database
from recordfsm.exceptions import PersistenceError, RecordNotFound, ValidationFailed
from recordfsm.models import Callback, invoke

logger = logging.getLogger(__name__)

R = TypeVar("R", bound="Record")

# Hook points, run in registration order.
HOOK_KINDS = frozenset({"before_validation_on_create", "after_save"})


class Query:
    """Lazy equality filter over one record table.

    Built by ``Record.where()`` and by generated state scopes; rows are
    fetched only when the query is iterated or counted.
    """

    def __init__(self, model: type[Record], criteria: Mapping[str, object] | None = None) -> None:
        self.model = model
        self.criteria = dict(criteria or {})
        for column in self.criteria:
            if column not in model.column_names():
                raise ValueError(f"{model.__name__} has no column '{column}'")

    def where(self, **criteria: object) -> Query:
        return Query(self.model, {**self.criteria, **criteria})

    def _where_clause(self) -> tuple[str, list[object]]:
        parts: list[str] = []
        params: list[object] = []
        for column, value in self.criteria.items():
            if value is None:
                parts.append(f"{column} IS NULL")
            else:
                parts.append(f"{column} = ?")
                params.append(value)
        clause = f" WHERE {' AND '.join(parts)}" if parts else ""
        return clause, params

    def all(self) -> list[Record]:
        clause, params = self._where_clause()
        pk = self.model.__primary_key__
        rows = self.model.database().execute(
            f"SELECT * FROM {self.model.__table__}{clause} ORDER BY {pk}", params
        ).fetchall()
        return [self.model.from_row(row) for row in rows]

    def first(self) -> Record | None:
        records = self.all()
        return records[0] if records else None

    def count(self) -> int:
        clause, params = self._where_clause()
        row = self.model.database().execute(
            f"SELECT COUNT(*) AS cnt FROM {self.model.__table__}{clause}", params
        ).fetchone()
        return row["cnt"]

    def exists(self) -> bool:
        return self.count() > 0

    def __iter__(self) -> Iterator[Record]:
        return iter(self.all())

    def __repr__(self) -> str:
        return f"<Query {self.model.__name__} {self.criteria!r}>"


class Record:
    """Base class for records stored one row per instance.

    Subclasses declare ``__table__`` and ``__columns__``; the primary key
    column ``id`` is implicit. Override ``validate()`` to append messages to
    ``self.errors``.
    """

    __table__: ClassVar[str] = ""
    __columns__: ClassVar[tuple[str, ...]] = ()
    __primary_key__: ClassVar[str] = "id"

    _database: ClassVar[Database | None] = None
    _hooks: ClassVar[dict[str, tuple[Callback, ...]]] = {}

    def __init__(self, **attributes: Any) -> None:
        unknown = set(attributes) - set(self.column_names())
        if unknown:
            raise TypeError(f"{type(self).__name__} has no column(s): {', '.join(sorted(unknown))}")
        for column in self.column_names():
            setattr(self, column, None)
        for column, value in attributes.items():
            setattr(self, column, value)
        self._persisted = False
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Class-level configuration
    # ------------------------------------------------------------------

    @classmethod
    def use(cls, database: Database | None) -> None:
        """Bind *database* to this class and every subclass not bound itself."""
        cls._database = database

    @classmethod
    def database(cls) -> Database:
        if cls._database is None:
            raise PersistenceError(f"No database bound for {cls.__name__}; call Record.use(db)")
        return cls._database

    @classmethod
    def column_names(cls) -> tuple[str, ...]:
        return (cls.__primary_key__, *cls.__columns__)

    @classmethod
    def register_hook(cls, kind: str, callback: Callback) -> None:
        """Append *callback* to this class's *kind* hook list.

        The list is copied on write, so registering on a subclass never
        changes its parent. Registering the same callback twice is a no-op.
        """
        if kind not in HOOK_KINDS:
            raise ValueError(f"Unknown hook '{kind}'; expected one of {sorted(HOOK_KINDS)}")
        current = cls._hooks.get(kind, ())
        if callback in current:
            return
        cls._hooks = {**cls._hooks, kind: (*current, callback)}

    @classmethod
    def hooks(cls, kind: str) -> tuple[Callback, ...]:
        return cls._hooks.get(kind, ())

    def run_hooks(self, kind: str) -> None:
        for callback in type(self).hooks(kind):
            invoke(callback, self)

    @classmethod
    def transaction(cls, requires_new: bool = True) -> AbstractContextManager[Database]:
        return cls.database().transaction(requires_new=requires_new)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_row(cls: type[R], row: sqlite3.Row | Mapping[str, object]) -> R:
        """Build a persisted instance from a database row (no query issued)."""
        record = cls.__new__(cls)
        keys = row.keys()
        for column in cls.column_names():
            setattr(record, column, row[column] if column in keys else None)
        record._persisted = True
        record.errors = []
        return record

    @classmethod
    def find(cls: type[R], record_id: object) -> R:
        row = cls._fetch_row(record_id)
        return cls.from_row(row)

    @classmethod
    def _fetch_row(cls, record_id: object) -> sqlite3.Row:
        pk = cls.__primary_key__
        row = cls.database().execute(
            f"SELECT * FROM {cls.__table__} WHERE {pk} = ?", (record_id,)
        ).fetchone()
        if row is None:
            raise RecordNotFound(f"{cls.__name__} with {pk}={record_id!r} not found")
        return row

    @classmethod
    def where(cls, **criteria: object) -> Query:
        return Query(cls, criteria)

    @classmethod
    def all(cls) -> Query:
        return Query(cls)

    def reload(self: R) -> R:
        """Discard in-memory values and re-read every column from storage."""
        if self.new_record:
            raise RecordNotFound(f"Cannot reload unsaved {type(self).__name__}")
        row = self._fetch_row(self.primary_key)
        for column in self.column_names():
            setattr(self, column, row[column])
        self.errors = []
        return self

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    @property
    def new_record(self) -> bool:
        return not self._persisted

    @property
    def primary_key(self) -> object:
        return getattr(self, self.__primary_key__)

    def read_attribute(self, column: str) -> object:
        return getattr(self, column)

    def write_attribute(self, column: str, value: object) -> None:
        if column not in self.column_names():
            raise AttributeError(f"{type(self).__name__} has no column '{column}'")
        setattr(self, column, value)

    def attributes(self) -> dict[str, object]:
        return {column: getattr(self, column) for column in self.column_names()}

    # ------------------------------------------------------------------
    # Validation and saving
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Override to append error messages to ``self.errors``."""

    def valid(self) -> bool:
        """Run the validation pipeline.

        New records run their ``before_validation_on_create`` hooks first
        (this is where state machines assign the initial state).
        """
        if self.new_record:
            self.run_hooks("before_validation_on_create")
        self.errors = []
        self.validate()
        return not self.errors

    def save(self, validate: bool = True) -> bool:
        """Insert or update every column.

        Returns False without writing when validation fails. The write and
        the ``after_save`` hooks share one transactional scope.
        """
        if validate:
            if not self.valid():
                logger.debug("%s not saved: %s", self, "; ".join(self.errors))
                return False
        elif self.new_record:
            self.run_hooks("before_validation_on_create")

        with self.transaction() as db:
            if self.new_record:
                db.on_rollback(self._forget_insert(self.primary_key))
                self._insert()
            else:
                self._update(self.__columns__)
            self.run_hooks("after_save")
        return True

    def save_strict(self) -> None:
        """Save or raise ValidationFailed."""
        if not self.save():
            raise ValidationFailed(self, self.errors)

    @classmethod
    def create(cls: type[R], **attributes: Any) -> R:
        """Build and save a record; check ``new_record`` to see if it stuck."""
        record = cls(**attributes)
        record.save()
        return record

    @classmethod
    def create_strict(cls: type[R], **attributes: Any) -> R:
        record = cls(**attributes)
        record.save_strict()
        return record

    def update_columns(self, **values: object) -> None:
        """Write *values* straight to storage: no validation, no hooks."""
        if self.new_record:
            raise PersistenceError(f"Cannot update columns of unsaved {type(self).__name__}")
        for column, value in values.items():
            self.write_attribute(column, value)
        self._update(tuple(values))

    def _insert(self) -> None:
        columns = list(self.__columns__)
        if self.primary_key is not None:
            columns.insert(0, self.__primary_key__)
        placeholders = ", ".join("?" for _ in columns)
        cursor = self.database().execute(
            f"INSERT INTO {self.__table__} ({', '.join(columns)}) VALUES ({placeholders})",
            [getattr(self, c) for c in columns],
        )
        if self.primary_key is None:
            setattr(self, self.__primary_key__, cursor.lastrowid)
        self._persisted = True
        logger.debug("Inserted %s", self)

    def _forget_insert(self, previous_key: object) -> Callable[[], None]:
        """Undo for ``_insert``: the row is gone, so the record is new again."""

        def forget() -> None:
            setattr(self, self.__primary_key__, previous_key)
            self._persisted = False
            logger.debug("Insert of %s rolled back", self)

        return forget

    def _update(self, columns: tuple[str, ...]) -> None:
        if not columns:
            return
        assignments = ", ".join(f"{c} = ?" for c in columns)
        params = [getattr(self, c) for c in columns]
        params.append(self.primary_key)
        cursor = self.database().execute(
            f"UPDATE {self.__table__} SET {assignments} WHERE {self.__primary_key__} = ?",
            params,
        )
        if cursor.rowcount == 0:
            raise RecordNotFound(f"{self} no longer exists")
        logger.debug("Updated %s (%s)", self, ", ".join(columns))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.__primary_key__}={self.primary_key!r}>"
