"""Finite-state machines for persistent records."""

__version__ = "0.1.0"

from recordfsm.config import MachineConfig, load_machine_config
from recordfsm.database import Database, Rollback
from recordfsm.exceptions import (
    DefinitionError,
    NoMatchingTransition,
    PersistenceError,
    RecordNotFound,
    StateMachineError,
    UndefinedEvent,
    ValidationFailed,
)
from recordfsm.machine import StateMachine
from recordfsm.models import ANY, Event, State, Transition
from recordfsm.record import Query, Record
from recordfsm.runtime import InstanceMachine

__all__ = [
    "ANY",
    "Database",
    "DefinitionError",
    "Event",
    "InstanceMachine",
    "MachineConfig",
    "NoMatchingTransition",
    "PersistenceError",
    "Query",
    "Record",
    "RecordNotFound",
    "Rollback",
    "State",
    "StateMachine",
    "StateMachineError",
    "Transition",
    "UndefinedEvent",
    "ValidationFailed",
    "__version__",
    "load_machine_config",
]
