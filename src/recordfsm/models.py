"""Data models for state machine definitions: states, transitions, events."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union

from recordfsm.exceptions import DefinitionError

# A hook, guard or resolver: a callable taking (record, *args) or the name of
# a method on the record taking (*args).
Callback = Union[str, Callable[..., Any]]

ANY = "*"


def state_name(value: object) -> str:
    """Normalise a state or event identifier (str or str-valued Enum) to str."""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _fit_arguments(func: Callable[..., Any], args: tuple) -> tuple:
    """Trim *args* to what *func* accepts positionally."""
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return args
    positional = 0
    for param in signature.parameters.values():
        if param.kind is param.VAR_POSITIONAL:
            return args
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            positional += 1
    return args[:positional]


def invoke(callback: Callback, record: object, *args: Any) -> Any:
    """Call *callback* against *record*.

    Strings name a method on the record and receive ``*args``; callables
    receive ``(record, *args)``. Trailing arguments the callable does not
    accept are dropped, so ``lambda r: r.flag`` works for events fired
    with arguments.
    """
    if isinstance(callback, str):
        func = getattr(record, callback)
        call_args = args
    else:
        func = callback
        call_args = (record, *args)
    return func(*_fit_arguments(func, call_args))


@dataclass
class State:
    """A named state a record can hold in its backing column."""

    name: str
    initial: bool | Callback = False
    display: str | None = None
    before_enter: Callback | None = None
    after_enter: Callback | None = None
    exit: Callback | None = None

    @property
    def display_name(self) -> str:
        return self.display or self.name.replace("_", " ").capitalize()

    @property
    def conditional_initial(self) -> bool:
        return self.initial is not True and self.initial is not False

    def __str__(self) -> str:
        return self.name


@dataclass
class Transition:
    """One guarded rule of an event: from source state(s) to a target."""

    from_: tuple[str, ...] | str
    to: str | Callback
    guard: Callback | None = None

    def __post_init__(self) -> None:
        if self.from_ is None or self.from_ == ANY:
            self.from_ = ANY
        elif isinstance(self.from_, (str, Enum)):
            self.from_ = (state_name(self.from_),)
        else:
            self.from_ = tuple(state_name(s) for s in self.from_)
        # a string target is always a state name; resolvers must be callables
        if isinstance(self.to, (str, Enum)):
            self.to = state_name(self.to)

    @property
    def wildcard(self) -> bool:
        return self.from_ == ANY

    @property
    def resolves_target(self) -> bool:
        """True when the target is computed at fire time."""
        return callable(self.to)

    def matches(self, current: str | None) -> bool:
        return self.wildcard or current in self.from_

    def allowed(self, record: object, args: tuple) -> bool:
        if self.guard is None:
            return True
        return bool(invoke(self.guard, record, *args))

    def target(self, record: object, args: tuple) -> str:
        if self.resolves_target:
            return state_name(invoke(self.to, record, *args))
        return self.to


@dataclass
class Event:
    """A named trigger with an ordered list of guarded transitions.

    ``before`` and ``after`` run around the transition; ``after_commit``
    runs once the state write has been committed (or joined the caller's
    transaction).
    """

    name: str
    transitions: list[Transition] = field(default_factory=list)
    before: Callback | None = None
    after: Callback | None = None
    after_commit: Callback | None = None
    locked: bool = field(default=False, compare=False, repr=False)

    def transition(
        self,
        from_: object = ANY,
        to: object = None,
        guard: Callback | None = None,
    ) -> Event:
        """Append a transition; returns the event so calls can be chained."""
        if self.locked:
            raise DefinitionError(f"Event '{self.name}' belongs to a bound state machine")
        if to is None:
            raise ValueError(f"Transition on event '{self.name}' needs a target state")
        self.transitions.append(Transition(from_=from_, to=to, guard=guard))
        return self

    def find_transition(self, record: object, current: str | None, args: tuple) -> Transition | None:
        """Return the first transition whose source and guard match."""
        for candidate in self.transitions:
            if candidate.matches(current) and candidate.allowed(record, args):
                return candidate
        return None

    def source_states(self) -> set[str]:
        sources: set[str] = set()
        for t in self.transitions:
            if not t.wildcard:
                sources.update(t.from_)
        return sources
