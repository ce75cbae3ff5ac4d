"""Per-record state machine runtime.

``InstanceMachine`` is what ``record.<machine attribute>`` returns: it reads
the live state from the backing attribute, resolves events to transitions,
runs hooks, and hands the write to the machine's persistence adapter.

``install_instance_members`` adds the record-level conveniences
(``current_state``, ``is_<state>``, ``<event>()`` ...) to the owning class,
skipping any name the class already defines itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from recordfsm.exceptions import NoMatchingTransition, ValidationFailed
from recordfsm.models import invoke, state_name

if TYPE_CHECKING:
    from recordfsm.machine import StateMachine
    from recordfsm.models import Event, Transition

logger = logging.getLogger(__name__)

GENERATED_MEMBERS = "__recordfsm_generated__"


def is_new_record(record: object) -> bool:
    """Records without a ``new_record`` flag (plain objects) count as new."""
    return bool(getattr(record, "new_record", True))


class InstanceMachine:
    """State machine facade bound to one record."""

    def __init__(self, machine: StateMachine, record: object) -> None:
        self.machine = machine
        self.record = record

    def __repr__(self) -> str:
        return f"<InstanceMachine {self.machine.column}={self.current_state!r} of {self.record!r}>"

    # ------------------------------------------------------------------
    # Reading and writing the backing attribute
    # ------------------------------------------------------------------

    def _hook(self, name: str) -> Callable[..., Any] | None:
        """The record's own *name* member, if it applies to this machine.

        Members generated for another machine on the same record are
        ignored, so each machine reads and writes its own column.
        """
        record = self.record
        if name in getattr(record, "__dict__", {}):
            return getattr(record, name)
        generated = generated_for(type(record), name)
        if generated is not None and generated is not self.machine:
            return None
        return getattr(record, name, None)

    def in_memory_writer(self) -> Callable[[object], None]:
        return self._hook("write_state_without_persistence") or self.write_state_without_persistence

    def persisting_writer(self) -> Callable[[object], object]:
        return self._hook("write_state") or self.write_state

    @property
    def current_state(self) -> str | None:
        """The live state, read through the record's ``read_state`` hook."""
        reader = self._hook("read_state")
        if reader is None:
            return self.read_state()
        return reader()

    def read_state(self) -> str | None:
        """Default state reader.

        A stored value is returned verbatim, and an existing record with a
        NULL column reads as None. Only a new record with the column unset
        falls back to the initial state.
        """
        value = getattr(self.record, self.machine.column, None)
        if value is None and is_new_record(self.record):
            return self.machine.resolve_initial_state(self.record)
        return value

    def write_state_without_persistence(self, state: object) -> None:
        setattr(self.record, self.machine.column, state_name(state))

    def write_state(self, state: object) -> bool:
        return self.machine.persistence.write_state(self.record, self.machine.column, state_name(state))

    def ensure_initial_state(self) -> None:
        """Assign the initial state to a new record whose column is unset."""
        if not is_new_record(self.record):
            return
        if getattr(self.record, self.machine.column, None) is None:
            initial = self.machine.resolve_initial_state(self.record)
            self.in_memory_writer()(initial)
            logger.debug("Initial state of %r set to %s", self.record, initial)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_state(self, state: object) -> bool:
        return self.current_state == state_name(state)

    def may_fire(self, event: str, *args: Any) -> bool:
        """True when *event* has a transition whose source and guard match now."""
        definition = self.machine.get_event(event)
        return definition.find_transition(self.record, self.current_state, args) is not None

    def permitted_events(self) -> list[str]:
        return [name for name in self.machine.event_names if self.may_fire(name)]

    # ------------------------------------------------------------------
    # Firing events
    # ------------------------------------------------------------------

    def fire(self, event: str, *args: Any, persist: bool = True) -> bool:
        """Fire *event*; return False instead of raising when it cannot apply.

        A missing transition and a validation rejection both yield False.
        Storage failures and exceptions from guards or hooks propagate.
        """
        try:
            return self._run(event, args, persist)
        except NoMatchingTransition as exc:
            logger.debug("%s", exc)
            return False
        except ValidationFailed:
            return False

    def fire_strict(self, event: str, *args: Any, persist: bool = True) -> bool:
        """Fire *event*, raising NoMatchingTransition when nothing matches.

        A validation rejection returns False unless the machine is configured
        with ``whiny_persistence``. Storage failures always propagate.
        """
        config = self.machine.config
        try:
            return self._run(event, args, persist)
        except NoMatchingTransition:
            if config.whiny_transitions:
                raise
            return False
        except ValidationFailed:
            if config.whiny_persistence:
                raise
            return False

    def _resolve(self, event: Event, args: tuple) -> tuple[str | None, Transition]:
        current = self.current_state
        transition = event.find_transition(self.record, current, args)
        if transition is None:
            raise NoMatchingTransition(event.name, current, self.record)
        return current, transition

    def _run(self, event_name: str, args: tuple, persist: bool) -> bool:
        machine = self.machine
        record = self.record
        event = machine.get_event(event_name)

        # Guards run before anything is touched.
        current, transition = self._resolve(event, args)
        old_state = machine.find_state(current)

        adapter = machine.persistence
        with adapter.transaction(record, persist):
            if event.before is not None:
                invoke(event.before, record, *args)
            # The target is resolved after ``before`` so it sees its changes.
            new_state = machine.get_state(transition.target(record, args))
            logger.debug("%r: %s fires %s -> %s", record, event.name, current, new_state.name)

            if old_state is not None and old_state.exit is not None:
                invoke(old_state.exit, record, *args)
            if new_state.before_enter is not None:
                invoke(new_state.before_enter, record, *args)

            if not adapter.commit(record, self, new_state.name, persist):
                logger.warning(
                    "%r: %s rejected by validation, staying in %s", record, event.name, current
                )
                raise ValidationFailed(record, getattr(record, "errors", None))

            if new_state.after_enter is not None:
                invoke(new_state.after_enter, record, *args)

        # Past this point the write is committed (or joined to the caller's
        # transaction); failures below propagate without undoing it.
        if event.after is not None:
            invoke(event.after, record, *args)
        if persist and event.after_commit is not None:
            invoke(event.after_commit, record, *args)
        return True


# ----------------------------------------------------------------------
# Generated members
# ----------------------------------------------------------------------


def generated_for(owner: type, name: str) -> object | None:
    """The machine whose binding generated *owner*'s *name*, if any."""
    for klass in owner.__mro__:
        if name in klass.__dict__:
            return klass.__dict__.get(GENERATED_MEMBERS, {}).get(name)
    return None


def defines_member(owner: type, name: str, machine: object = None) -> bool:
    """True if *owner* already exposes *name* as something it wrote itself.

    Members generated for a base class's binding (recorded per class in
    ``__recordfsm_generated__``) do not count, so a subclass binding can
    replace them. A member generated on *owner* itself for another machine
    does count: the first machine bound keeps its helpers. Attributes
    provided by the metaclass count too.
    """
    for klass in owner.__mro__:
        if name in klass.__dict__:
            generated = klass.__dict__.get(GENERATED_MEMBERS, {})
            if name not in generated:
                return True
            return klass is owner and generated[name] is not machine
    return any(name in klass.__dict__ for klass in type(owner).__mro__)


def install_member(owner: type, name: str, member: object, machine: object = None) -> bool:
    """Set *member* on *owner* unless the class defines *name* itself."""
    if defines_member(owner, name, machine):
        logger.debug("%s already defines '%s'; not generating it", owner.__name__, name)
        return False
    generated = owner.__dict__.get(GENERATED_MEMBERS)
    if generated is None:
        generated = {}
        setattr(owner, GENERATED_MEMBERS, generated)
    setattr(owner, name, member)
    generated[name] = machine
    return True


def _runtime(record: object, attribute: str) -> InstanceMachine:
    return getattr(record, attribute)


@dataclass(frozen=True)
class InitialStateHook:
    """Before-create hook for a machine bound after the class's first one.

    The record-level ``ensure_initial_state`` belongs to the first machine,
    so later machines register this instead.
    """

    attribute: str

    def __call__(self, record: object) -> None:
        _runtime(record, self.attribute).ensure_initial_state()


def _state_predicate(attribute: str, state: str) -> property:
    def predicate(self: object) -> bool:
        return _runtime(self, attribute).current_state == state

    predicate.__name__ = f"is_{state}"
    predicate.__doc__ = f"True when the record is in state '{state}'."
    return property(predicate)


def _event_method(attribute: str, event: str, strict: bool) -> Callable[..., bool]:
    def fire(self: object, *args: Any, persist: bool = True) -> bool:
        runtime = _runtime(self, attribute)
        if strict:
            return runtime.fire_strict(event, *args, persist=persist)
        return runtime.fire(event, *args, persist=persist)

    fire.__name__ = f"{event}_strict" if strict else event
    fire.__doc__ = f"Fire event '{event}'" + (" (raising variant)." if strict else ".")
    return fire


def _may_method(attribute: str, event: str) -> Callable[..., bool]:
    def may(self: object, *args: Any) -> bool:
        return _runtime(self, attribute).may_fire(event, *args)

    may.__name__ = f"may_{event}"
    return may


def install_instance_members(owner: type, machine: StateMachine, attribute: str) -> list[str]:
    """Generate record-level helpers for *machine* on *owner*.

    Returns the names actually installed.
    """

    def current_state(self: object) -> str | None:
        return _runtime(self, attribute).current_state

    def read_state(self: object) -> str | None:
        return _runtime(self, attribute).read_state()

    def write_state(self: object, state: object) -> bool:
        return _runtime(self, attribute).write_state(state)

    def write_state_without_persistence(self: object, state: object) -> None:
        _runtime(self, attribute).write_state_without_persistence(state)

    def ensure_initial_state(self: object) -> None:
        _runtime(self, attribute).ensure_initial_state()

    def fire(self: object, event: str, *args: Any, persist: bool = True) -> bool:
        return _runtime(self, attribute).fire(event, *args, persist=persist)

    def fire_strict(self: object, event: str, *args: Any, persist: bool = True) -> bool:
        return _runtime(self, attribute).fire_strict(event, *args, persist=persist)

    def may_fire(self: object, event: str, *args: Any) -> bool:
        return _runtime(self, attribute).may_fire(event, *args)

    def permitted_events(self: object) -> list[str]:
        return _runtime(self, attribute).permitted_events()

    members: dict[str, object] = {
        "current_state": property(current_state),
        "read_state": read_state,
        "write_state": write_state,
        "write_state_without_persistence": write_state_without_persistence,
        "ensure_initial_state": ensure_initial_state,
        "fire": fire,
        "fire_strict": fire_strict,
        "may_fire": may_fire,
        "permitted_events": permitted_events,
    }
    for state in machine.state_names:
        members[f"is_{state}"] = _state_predicate(attribute, state)
    for event in machine.event_names:
        members[event] = _event_method(attribute, event, strict=False)
        members[f"{event}_strict"] = _event_method(attribute, event, strict=True)
        members[f"may_{event}"] = _may_method(attribute, event)

    return [name for name, member in members.items() if install_member(owner, name, member, machine)]
