"""Pydantic models describing a bound state machine.

Used by the CLI's ``describe`` command and for JSON export of a
definition. Callables (guards, resolvers, hooks) are reported by name only.
"""

from __future__ import annotations

from dataclasses import asdict

from pydantic import BaseModel, Field

from recordfsm.machine import StateMachine
from recordfsm.models import Callback, Transition


def _callback_name(callback: Callback | None) -> str | None:
    if callback is None:
        return None
    if isinstance(callback, str):
        return callback
    return getattr(callback, "__qualname__", None) or repr(callback)


class StateSchema(BaseModel):
    """One declared state."""

    name: str
    display: str
    initial: bool = False
    conditional_initial: bool = False


class TransitionSchema(BaseModel):
    """One guarded transition of an event."""

    from_states: list[str] | None = Field(default=None, description="None means any state")
    to: str | None = Field(default=None, description="None when resolved at fire time")
    resolver: str | None = None
    guard: str | None = None


class EventSchema(BaseModel):
    """An event and its transitions in declaration order."""

    name: str
    transitions: list[TransitionSchema]
    hooks: dict[str, str] = Field(default_factory=dict)


class MachineSchema(BaseModel):
    """Complete description of a state machine bound to a record class."""

    model: str | None
    column: str
    initial: str | None = None
    states: list[StateSchema]
    events: list[EventSchema]
    config: dict[str, bool]


def _transition_schema(transition: Transition) -> TransitionSchema:
    return TransitionSchema(
        from_states=None if transition.wildcard else list(transition.from_),
        to=None if transition.resolves_target else transition.to,
        resolver=_callback_name(transition.to) if transition.resolves_target else None,
        guard=_callback_name(transition.guard),
    )


def describe(machine: StateMachine) -> MachineSchema:
    """Build a MachineSchema for *machine*."""
    initial = machine.initial
    events = []
    for event in machine.events.values():
        hooks = {
            kind: _callback_name(getattr(event, kind))
            for kind in ("before", "after", "after_commit")
            if getattr(event, kind) is not None
        }
        events.append(
            EventSchema(
                name=event.name,
                transitions=[_transition_schema(t) for t in event.transitions],
                hooks=hooks,
            )
        )
    return MachineSchema(
        model=machine.owner.__name__ if machine.owner else None,
        column=machine.column,
        initial=_callback_name(initial) if callable(initial) else initial,
        states=[
            StateSchema(
                name=s.name,
                display=s.display_name,
                initial=s.initial is True,
                conditional_initial=s.conditional_initial,
            )
            for s in machine.states
        ],
        events=events,
        config=asdict(machine.config),
    )
