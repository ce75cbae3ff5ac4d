"""Class-level query accessors, one per declared state.

``Gate.closed()`` returns a ``Query`` for every stored gate whose state
column is ``'closed'``. An accessor is only generated when the class does
not already expose that name, so ``find``, ``where`` or a user-defined
method with a state's name are left alone.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from recordfsm.runtime import install_member

if TYPE_CHECKING:
    from recordfsm.machine import StateMachine

logger = logging.getLogger(__name__)


def _scope(attribute: str, state: str) -> Callable[..., Any]:
    def scope(cls: type) -> Any:
        machine = getattr(cls, attribute)
        return cls.where(**{machine.column: state})

    scope.__name__ = state
    scope.__doc__ = f"All stored records in state '{state}'."
    return scope


def define_state_scopes(owner: type, machine: StateMachine, attribute: str) -> list[str]:
    """Install one query accessor per state on *owner*; return those added."""
    if not machine.config.create_scopes:
        return []
    if not callable(getattr(owner, "where", None)):
        logger.debug("%s has no where(); skipping state scopes", owner.__name__)
        return []

    added = []
    for state in machine.state_names:
        if install_member(owner, state, classmethod(_scope(attribute, state)), machine):
            added.append(state)
    return added
