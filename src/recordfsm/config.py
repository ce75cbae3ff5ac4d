"""Configuration loading for state machine persistence policy."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RECORDFSM_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/recordfsm.json")


@dataclass(frozen=True)
class MachineConfig:
    """Persistence policy shared by every instance of a state machine.

    Attributes:
        enforce_validity: Validate the record before persisting a new state.
            When False only the state column is written, valid or not.
        whole_transaction: Wrap the event in a transactional scope so hook
            writes and the state write commit or roll back together.
        requires_new_transaction: Inside an ambient transaction, open a
            savepoint instead of joining the caller's transaction.
        whiny_transitions: Strict firing raises NoMatchingTransition.
        whiny_persistence: Strict firing raises ValidationFailed instead of
            returning False.
        create_scopes: Generate one class-level query accessor per state.
    """

    enforce_validity: bool = True
    whole_transaction: bool = True
    requires_new_transaction: bool = True
    whiny_transitions: bool = True
    whiny_persistence: bool = False
    create_scopes: bool = True

    def merge(self, **overrides: object) -> MachineConfig:
        """Return a copy with *overrides* applied, rejecting unknown keys."""
        unknown = set(overrides) - _field_names()
        if unknown:
            raise TypeError(f"Unknown state machine option(s): {', '.join(sorted(unknown))}")
        return replace(self, **overrides)


def _field_names() -> set[str]:
    return {f.name for f in fields(MachineConfig)}


def load_machine_config(config_path: Path | None = None) -> MachineConfig:
    """Load the default persistence policy from JSON, falling back to defaults.

    Reads from *config_path*, else the file named by ``RECORDFSM_CONFIG``,
    else ``config/recordfsm.json``. A missing file yields the built-in
    defaults; unrecognised keys and non-boolean values are ignored with a
    warning.

    Args:
        config_path: Optional explicit path to a JSON config file.

    Returns:
        MachineConfig populated from the file over defaults.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {config_path}")

    known = _field_names()
    ignored = sorted(k for k in data if k not in known)
    if ignored:
        logger.warning("Ignoring unknown config keys in %s: %s", config_path, ", ".join(ignored))

    kwargs = {}
    for key, value in data.items():
        if key not in known:
            continue
        if not isinstance(value, bool):
            logger.warning(
                "Ignoring %s=%r in %s: expected true or false", key, value, config_path
            )
            continue
        kwargs[key] = value
    return MachineConfig(**kwargs)
