"""State machine definitions declared in a class body.

Usage::

    class Validator(Record):
        __table__ = "validators"
        __columns__ = ("name", "status")

        machine = StateMachine(column="status")
        machine.state("sleeping", initial=True)
        machine.state("running")
        machine.event("run").transition(from_="sleeping", to="running")
        machine.event("sleep").transition(from_="running", to="sleeping")

The definition is built while the class body runs and bound to the class by
``__set_name__``, after which it is frozen. Subclasses see the very same
object; a subclass that needs more states or events declares
``machine = Parent.machine.extend()`` and adds to the copy.
"""

from __future__ import annotations

import logging
from typing import Any, overload

from recordfsm.config import MachineConfig
from recordfsm.exceptions import DefinitionError, UndefinedEvent
from recordfsm.models import Callback, Event, State, Transition, invoke, state_name
from recordfsm.persistence import RecordPersistence, TransientPersistence
from recordfsm.record import Record
from recordfsm.runtime import (
    InitialStateHook,
    InstanceMachine,
    generated_for,
    install_instance_members,
)
from recordfsm.scopes import define_state_scopes

logger = logging.getLogger(__name__)

DEFAULT_COLUMN = "state"


class StateMachine:
    """Type-level definition of states, events and persistence policy.

    Args:
        column: Name of the attribute/column holding the state.
        initial: Initial state name, or a resolver ``(record) -> name``.
            Overrides ``initial=`` flags given to ``state()``.
        config: Persistence policy; keyword *options* override single fields.
    """

    def __init__(
        self,
        column: str = DEFAULT_COLUMN,
        initial: object = None,
        config: MachineConfig | None = None,
        **options: bool,
    ) -> None:
        self.column = column
        self.initial = initial if initial is None or callable(initial) else state_name(initial)
        base = config or MachineConfig()
        self.config = base.merge(**options) if options else base
        self._states: dict[str, State] = {}
        self._events: dict[str, Event] = {}
        self.owner: type | None = None
        self.attribute: str | None = None
        self.persistence: RecordPersistence | TransientPersistence | None = None
        self._frozen = False

    # ------------------------------------------------------------------
    # Declaration
    # ------------------------------------------------------------------

    def _check_open(self, what: str) -> None:
        if self._frozen:
            raise DefinitionError(
                f"Cannot declare {what} on a bound state machine; use extend() in a subclass"
            )

    def state(
        self,
        name: object,
        initial: bool | Callback = False,
        display: str | None = None,
        before_enter: Callback | None = None,
        after_enter: Callback | None = None,
        exit: Callback | None = None,
    ) -> State:
        """Declare a state.

        Args:
            name: State identifier (str or str-valued Enum member).
            initial: True for the default initial state, or a predicate
                ``(record) -> bool``; predicates are tried in declaration
                order before any plain ``initial=True`` state.
            display: Human readable name.
            before_enter: Hook run before the state is written.
            after_enter: Hook run after the write, inside the event's scope.
            exit: Hook run when leaving this state, before the write.
        """
        key = state_name(name)
        self._check_open(f"state '{key}'")
        if key in self._states:
            raise DefinitionError(f"State '{key}' is already declared")
        declared = State(
            name=key,
            initial=initial,
            display=display,
            before_enter=before_enter,
            after_enter=after_enter,
            exit=exit,
        )
        self._states[key] = declared
        return declared

    def event(
        self,
        name: object,
        *transitions: Transition,
        before: Callback | None = None,
        after: Callback | None = None,
        after_commit: Callback | None = None,
    ) -> Event:
        """Declare an event; add transitions here or via ``Event.transition()``."""
        key = state_name(name)
        self._check_open(f"event '{key}'")
        if key in self._events:
            raise DefinitionError(f"Event '{key}' is already declared")
        declared = Event(
            name=key,
            transitions=list(transitions),
            before=before,
            after=after,
            after_commit=after_commit,
        )
        self._events[key] = declared
        return declared

    def extend(self, column: str | None = None, initial: object = None, **options: bool) -> StateMachine:
        """Return an unbound copy for a subclass to add declarations to.

        States and events are shared with this machine, which is never
        modified; redeclaring an inherited name raises DefinitionError.
        """
        child = StateMachine(
            column=column or self.column,
            initial=self.initial if initial is None else initial,
            config=self.config,
            **options,
        )
        child._states = dict(self._states)
        child._events = dict(self._events)
        return child

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def states(self) -> list[State]:
        return list(self._states.values())

    @property
    def state_names(self) -> list[str]:
        return list(self._states)

    @property
    def events(self) -> dict[str, Event]:
        return dict(self._events)

    @property
    def event_names(self) -> list[str]:
        return list(self._events)

    @property
    def bound(self) -> bool:
        return self._frozen

    def get_state(self, name: object) -> State:
        key = state_name(name)
        try:
            return self._states[key]
        except KeyError:
            raise DefinitionError(f"State '{key}' is not declared") from None

    def find_state(self, name: object) -> State | None:
        if name is None:
            return None
        return self._states.get(state_name(name))

    def get_event(self, name: object) -> Event:
        key = state_name(name)
        try:
            return self._events[key]
        except KeyError:
            raise UndefinedEvent(f"Event '{key}' is not declared") from None

    def resolve_initial_state(self, record: object) -> str | None:
        """Pick the initial state for *record*.

        Order: the machine-level ``initial``; then states with a predicate
        ``initial``, first true wins; then the first ``initial=True`` state;
        then the first declared state.
        """
        if self.initial is not None:
            if callable(self.initial):
                return state_name(invoke(self.initial, record))
            return self.initial
        for candidate in self._states.values():
            if candidate.conditional_initial and invoke(candidate.initial, record):
                return candidate.name
        for candidate in self._states.values():
            if candidate.initial is True:
                return candidate.name
        return next(iter(self._states), None)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateMachine):
            return NotImplemented
        return (
            self.column == other.column
            and self.initial == other.initial
            and self.states == other.states
            and self.events == other.events
            and self.config == other.config
        )

    __hash__ = object.__hash__

    def __repr__(self) -> str:
        owner = self.owner.__name__ if self.owner else "unbound"
        return f"<StateMachine {owner}.{self.column} states={self.state_names} events={self.event_names}>"

    # ------------------------------------------------------------------
    # Binding to the owning class
    # ------------------------------------------------------------------

    def validate_definition(self) -> None:
        """Check that every literal state reference is declared."""
        if not self._states:
            raise DefinitionError("A state machine needs at least one state")
        if self.initial is not None and not callable(self.initial) and self.initial not in self._states:
            raise DefinitionError(f"Initial state '{self.initial}' is not declared")
        for event in self._events.values():
            if not event.transitions:
                raise DefinitionError(f"Event '{event.name}' has no transitions")
            for transition in event.transitions:
                sources = () if transition.wildcard else transition.from_
                unknown = [s for s in sources if s not in self._states]
                if not transition.resolves_target and transition.to not in self._states:
                    unknown.append(transition.to)
                if unknown:
                    raise DefinitionError(
                        f"Event '{event.name}' refers to undeclared state(s): {', '.join(unknown)}"
                    )

    def bind(self, owner: type, attribute: str) -> None:
        """Attach this machine to *owner* under *attribute*.

        Binding freezes the definition, picks the persistence adapter from
        the class's capabilities, generates record-level helpers and state
        scopes, and registers the initial-state hook for new records.
        """
        if self._frozen:
            if self.owner is not None and issubclass(owner, self.owner):
                # Re-assigned in a subclass body: same definition, new names.
                self._install(owner, attribute)
                return
            raise DefinitionError(
                f"State machine already bound to {self.owner.__name__ if self.owner else '?'}"
            )

        self.validate_definition()
        for event in self._events.values():
            event.locked = True
        self._frozen = True
        self.owner = owner
        self.attribute = attribute

        if issubclass(owner, Record):
            self.persistence = RecordPersistence(self.config)
        else:
            self.persistence = TransientPersistence(self.config)
        self._install(owner, attribute)
        logger.debug(
            "Bound %s.%s: %d states, %d events, %s",
            owner.__name__, attribute, len(self._states), len(self._events),
            type(self.persistence).__name__,
        )

    def _install(self, owner: type, attribute: str) -> None:
        install_instance_members(owner, self, attribute)
        define_state_scopes(owner, self, attribute)
        if issubclass(owner, Record):
            owner.register_hook("before_validation_on_create", "ensure_initial_state")
            first = generated_for(owner, "ensure_initial_state")
            if first is not None and first is not self:
                owner.register_hook("before_validation_on_create", InitialStateHook(attribute))

    def __set_name__(self, owner: type, name: str) -> None:
        self.bind(owner, name)

    @overload
    def __get__(self, instance: None, owner: type) -> StateMachine: ...

    @overload
    def __get__(self, instance: object, owner: type) -> InstanceMachine: ...

    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return InstanceMachine(self, instance)
