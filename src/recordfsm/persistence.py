"""Persistence adapters: how a transition's new state reaches storage.

The adapter for a class is chosen once, when its state machine is bound:
``RecordPersistence`` for ``Record`` subclasses, ``TransientPersistence``
for anything else.

Commit matrix for ``RecordPersistence`` (``persist=True``):

==========  ================  =================  ==========================================
record      enforce_validity  whole_transaction  outcome
==========  ================  =================  ==========================================
new         any               any                assign in memory; the record's own save persists
existing    True              True               scope; assign; save (validates) or revert -> False
existing    False             True               scope; assign; write the state column only
existing    any               False              assign and write in the caller's transaction, if any
==========  ================  =================  ==========================================
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager, nullcontext
from typing import TYPE_CHECKING

from recordfsm.config import MachineConfig
from recordfsm.runtime import is_new_record

if TYPE_CHECKING:
    from recordfsm.record import Record
    from recordfsm.runtime import InstanceMachine

logger = logging.getLogger(__name__)


class TransientPersistence:
    """Keeps state in memory only; used for classes with no storage."""

    def __init__(self, config: MachineConfig) -> None:
        self.config = config

    def transaction(self, record: object, persist: bool) -> AbstractContextManager[object]:
        return nullcontext()

    def commit(self, record: object, runtime: InstanceMachine, new_state: str, persist: bool) -> bool:
        if persist:
            return runtime.persisting_writer()(new_state) is not False
        runtime.in_memory_writer()(new_state)
        return True

    def write_state(self, record: object, column: str, new_state: str) -> bool:
        setattr(record, column, new_state)
        return True


class RecordPersistence:
    """Coordinates state writes with a Record's validation and transactions."""

    def __init__(self, config: MachineConfig) -> None:
        self.config = config

    def transaction(self, record: Record, persist: bool) -> AbstractContextManager[object]:
        """Scope wrapping one event, or a no-op when nothing is written now.

        Inside a caller's transaction the scope is a savepoint (or joins it
        when ``requires_new_transaction`` is off), so a failure in the
        caller's transaction still rolls the state write back.
        """
        if not persist or is_new_record(record) or not self.config.whole_transaction:
            return nullcontext()
        return type(record).transaction(requires_new=self.config.requires_new_transaction)

    def commit(self, record: Record, runtime: InstanceMachine, new_state: str, persist: bool) -> bool:
        """Apply *new_state* to *record*; False means validation rejected it."""
        if not persist or is_new_record(record):
            # A new record is persisted by its own save(); the before-create
            # hook leaves an already assigned state alone.
            runtime.in_memory_writer()(new_state)
            return True
        return runtime.persisting_writer()(new_state) is not False

    def write_state(self, record: Record, column: str, new_state: str) -> bool:
        """Persist *new_state* on an existing record.

        With ``enforce_validity`` the whole record is saved and must pass
        validation; on rejection the attribute is restored to its previous
        value. Without it only the state column is written.
        """
        old_state = getattr(record, column)
        setattr(record, column, new_state)
        try:
            if self.config.enforce_validity:
                saved = record.save()
            else:
                record.update_columns(**{column: new_state})
                saved = True
        except BaseException:
            setattr(record, column, old_state)
            raise

        if not saved:
            setattr(record, column, old_state)
            logger.debug("%r invalid (%s); %s kept at %s", record, "; ".join(record.errors), column, old_state)
            return False
        logger.debug("Persisted %r %s: %s -> %s", record, column, old_state, new_state)
        return True
