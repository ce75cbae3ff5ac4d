"""Exception hierarchy for record state machines.

Exceptions raised by the caller's own code (guards, hooks, or failures in an
ambient transaction opened outside the engine) are never wrapped; they
propagate as-is.
"""

from __future__ import annotations


class StateMachineError(Exception):
    """Base class for all recordfsm errors."""


class DefinitionError(StateMachineError):
    """A state machine declaration is malformed or was changed after binding."""


class NoMatchingTransition(StateMachineError):
    """An event was fired but no transition matches the current state."""

    def __init__(self, event: str, state: str | None, record: object = None) -> None:
        self.event = event
        self.state = state
        self.record = record
        super().__init__(f"Event '{event}' cannot transition from '{state}'")


class ValidationFailed(StateMachineError):
    """The record failed validation, so the new state was not persisted."""

    def __init__(self, record: object, errors: list[str] | None = None) -> None:
        self.record = record
        self.errors = list(errors or [])
        detail = "; ".join(self.errors) or "record is invalid"
        super().__init__(f"Validation failed for {type(record).__name__}: {detail}")


class PersistenceError(StateMachineError):
    """The storage layer failed for a reason unrelated to validation."""


class RecordNotFound(PersistenceError):
    """A record lookup by primary key matched no row."""


class UndefinedEvent(StateMachineError):
    """An event name that the machine does not declare."""
