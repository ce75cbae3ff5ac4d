"""SQLite database layer backing persistent state machines.

Manages the connection lifecycle, pragmas, and nestable transaction scopes.
The connection runs with ``isolation_level=None`` so every transaction is
opened explicitly: ``BEGIN`` at the outermost scope, ``SAVEPOINT`` for a
nested scope that requires its own rollback boundary.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from recordfsm.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class Rollback(Exception):
    """Raise inside ``Database.transaction()`` to roll back that scope quietly.

    The scope that opened the BEGIN or SAVEPOINT swallows it. A scope that
    joined an enclosing transaction also swallows it without rolling
    anything back; the enclosing scope still decides.
    """


class Database:
    """SQLite database wrapper with nestable transactions.

    Usage:
        with Database("data/records.db", schema_sql=SCHEMA_SQL) as db:
            with db.transaction():
                db.execute("UPDATE gates SET state = ? WHERE id = ?", ("closed", 1))
                with db.transaction():      # SAVEPOINT
                    ...
    """

    def __init__(self, db_path: str | Path, schema_sql: str | None = None) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(self.db_path, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self._depth = 0
        self._undo: list[list[Callable[[], object]]] = []
        self._setup_pragmas()
        if schema_sql:
            self.executescript(schema_sql)

    def _setup_pragmas(self) -> None:
        """Configure SQLite pragmas for performance and reliability."""
        self.conn.execute("PRAGMA foreign_keys=ON")
        if self.db_path == ":memory:":
            return
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")

        # Verify WAL mode
        result = self.conn.execute("PRAGMA journal_mode").fetchone()[0]
        if result != "wal":
            logger.warning("WAL mode not enabled, got: %s", result)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: Sequence[object] = ()) -> sqlite3.Cursor:
        """Execute one statement, surfacing driver errors as PersistenceError."""
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise PersistenceError(f"{exc} (sql: {sql.strip()})") from exc

    def executescript(self, script: str) -> None:
        """Run a multi-statement script such as a schema definition."""
        try:
            self.conn.executescript(script)
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @property
    def depth(self) -> int:
        """Number of transaction scopes currently open (joined ones included)."""
        return self._depth

    @contextmanager
    def transaction(self, requires_new: bool = True) -> Iterator[Database]:
        """Open a transactional scope.

        At depth 0 this issues ``BEGIN``. Inside another scope it issues a
        ``SAVEPOINT`` when *requires_new* is True, otherwise it joins the
        enclosing transaction. Any exception rolls the scope back and
        propagates, except ``Rollback`` which is swallowed.

        Args:
            requires_new: Give a nested scope its own savepoint.
        """
        if self._depth and not requires_new:
            self._depth += 1
            try:
                yield self
            except Rollback:
                logger.debug("Rollback raised in a joined transaction; enclosing scope decides")
            finally:
                self._depth -= 1
            return

        savepoint = f"recordfsm_sp_{self._depth}" if self._depth else None
        self.execute(f"SAVEPOINT {savepoint}" if savepoint else "BEGIN")
        self._depth += 1
        self._undo.append([])
        try:
            yield self
        except Rollback:
            self._rollback(savepoint)
        except BaseException:
            self._rollback(savepoint)
            raise
        else:
            self._commit(savepoint)
        finally:
            self._depth -= 1

    def on_rollback(self, callback: Callable[[], object]) -> None:
        """Run *callback* if the innermost open scope is rolled back.

        A released savepoint hands its callbacks to the enclosing scope, so
        they still run if the outer transaction rolls back. Outside any
        transaction the write is already durable and *callback* is dropped.
        """
        if self._undo:
            self._undo[-1].append(callback)

    def _commit(self, savepoint: str | None) -> None:
        callbacks = self._undo.pop()
        if savepoint:
            self.execute(f"RELEASE SAVEPOINT {savepoint}")
            self._undo[-1].extend(callbacks)
        else:
            self.execute("COMMIT")

    def _rollback(self, savepoint: str | None) -> None:
        callbacks = self._undo.pop()
        if savepoint:
            self.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
            self.execute(f"RELEASE SAVEPOINT {savepoint}")
            logger.debug("Rolled back to savepoint %s", savepoint)
        else:
            self.execute("ROLLBACK")
            logger.debug("Rolled back transaction")
        for callback in reversed(callbacks):
            callback()

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()
