"""Tests for state machine definitions and binding.

Covers:
  - Declaration: states, events, transitions, Enum identifiers
  - Validation at bind time (undeclared states, empty events, no states)
  - Freezing: no declarations after binding, no rebinding to another class
  - Inheritance: subclasses share the definition; extend() copies it
  - Initial state resolution: machine-level resolver, state predicates
  - Generated members and capability detection (own read/write hooks)
"""

from __future__ import annotations

import pytest

from record_models import (
    ConditionalThief,
    Derivate,
    Gate,
    Lamp,
    Reader,
    Simple,
    SimpleExtended,
    Thief,
    Transient,
    Validator,
    Worker,
    Writer,
)
from recordfsm import DefinitionError, Record, StateMachine, UndefinedEvent
from recordfsm.persistence import RecordPersistence, TransientPersistence
from recordfsm.runtime import GENERATED_MEMBERS


# ======================================================================
# Declaration and validation
# ======================================================================


class TestDeclaration:
    def test_states_and_events_in_declaration_order(self):
        assert Validator.machine.state_names == ["sleeping", "running"]
        assert Validator.machine.event_names == ["run", "sleep"]

    def test_column_defaults_to_state(self):
        assert Gate.machine.column == "state"
        assert Validator.machine.column == "status"

    def test_duplicate_state_rejected(self):
        machine = StateMachine()
        machine.state("a")
        with pytest.raises(DefinitionError, match="already declared"):
            machine.state("a")

    def test_duplicate_event_rejected(self):
        machine = StateMachine()
        machine.event("go")
        with pytest.raises(DefinitionError, match="already declared"):
            machine.event("go")

    def test_transition_needs_target(self):
        machine = StateMachine()
        with pytest.raises(ValueError, match="needs a target"):
            machine.event("go").transition(from_="a")

    def test_unknown_option_rejected(self):
        with pytest.raises(TypeError, match="bogus"):
            StateMachine(bogus=True)

    def test_options_override_config(self):
        machine = StateMachine(enforce_validity=False)
        assert machine.config.enforce_validity is False
        assert machine.config.whole_transaction is True

    def test_undeclared_target_fails_validation(self):
        machine = StateMachine()
        machine.state("a")
        machine.event("go").transition(from_="a", to="b")
        with pytest.raises(DefinitionError, match="undeclared state"):
            machine.validate_definition()

    def test_undeclared_source_fails_validation(self):
        machine = StateMachine()
        machine.state("a")
        machine.event("go").transition(from_=["a", "ghost"], to="a")
        with pytest.raises(DefinitionError, match="ghost"):
            machine.validate_definition()

    def test_event_without_transitions_fails_validation(self):
        machine = StateMachine()
        machine.state("a")
        machine.event("go")
        with pytest.raises(DefinitionError, match="no transitions"):
            machine.validate_definition()

    def test_machine_needs_a_state(self):
        with pytest.raises(DefinitionError, match="at least one state"):
            StateMachine().validate_definition()

    def test_undeclared_initial_state(self):
        machine = StateMachine(initial="missing")
        machine.state("a")
        with pytest.raises(DefinitionError, match="Initial state"):
            machine.validate_definition()

    def test_invalid_definition_raises_when_class_is_created(self):
        with pytest.raises(DefinitionError):

            class Broken:
                machine = StateMachine()
                machine.state("a")
                machine.event("go").transition(from_="a", to="b")

    def test_get_state_and_event_lookups(self):
        machine = Gate.machine
        assert machine.get_state("closed").name == "closed"
        assert machine.find_state("nowhere") is None
        assert machine.find_state(None) is None
        with pytest.raises(DefinitionError):
            machine.get_state("nowhere")
        with pytest.raises(UndefinedEvent):
            machine.get_event("explode")

    def test_display_name_defaults_from_state_name(self):
        machine = StateMachine()
        plain = machine.state("waiting_for_review")
        named = machine.state("done", display="Finished")
        assert plain.display_name == "Waiting for review"
        assert named.display_name == "Finished"


# ======================================================================
# Binding
# ======================================================================


class TestBinding:
    def test_bound_machine_is_frozen(self):
        assert Gate.machine.bound
        with pytest.raises(DefinitionError, match="extend"):
            Gate.machine.state("ajar")
        with pytest.raises(DefinitionError):
            Gate.machine.event("slam")

    def test_bound_event_rejects_new_transitions(self):
        close = Gate.machine.events["close"]
        with pytest.raises(DefinitionError, match="bound state machine"):
            close.transition(from_="closed", to="opened")
        assert len(Gate.machine.events["close"].transitions) == 1

    def test_cannot_bind_to_unrelated_class(self):
        with pytest.raises(DefinitionError, match="already bound"):
            Gate.machine.bind(Lamp, "machine")

    def test_persistence_adapter_follows_capabilities(self):
        assert isinstance(Gate.machine.persistence, RecordPersistence)
        assert isinstance(Lamp.machine.persistence, TransientPersistence)

    def test_owner_and_attribute_recorded(self):
        assert Gate.machine.owner is Gate
        assert Gate.machine.attribute == "machine"

    def test_initial_state_hook_registered_on_records_only(self):
        assert Gate.hooks("before_validation_on_create") == ("ensure_initial_state",)
        assert Record.hooks("before_validation_on_create") == ()
        assert Worker.hooks("before_validation_on_create") == ()

    def test_instance_access_returns_runtime(self):
        gate = Gate()
        assert gate.machine.machine is Gate.machine
        assert gate.machine.record is gate


# ======================================================================
# Capability detection
# ======================================================================


class TestGeneratedMembers:
    def test_plain_record_gets_all_state_accessors(self):
        generated = set(vars(Gate)[GENERATED_MEMBERS])
        assert {"read_state", "write_state", "write_state_without_persistence"} <= generated

    def test_own_read_state_is_kept(self):
        generated = set(vars(Reader)[GENERATED_MEMBERS])
        assert "read_state" not in generated
        assert {"write_state", "write_state_without_persistence"} <= generated
        assert Reader.read_state.__qualname__ == "Reader.read_state"

    def test_own_write_state_is_kept(self):
        generated = set(vars(Writer)[GENERATED_MEMBERS])
        assert "write_state" not in generated
        assert {"read_state", "write_state_without_persistence"} <= generated
        assert Writer.write_state.__qualname__ == "Writer.write_state"

    def test_own_write_state_without_persistence_is_kept(self):
        generated = set(vars(Transient)[GENERATED_MEMBERS])
        assert "write_state_without_persistence" not in generated
        assert {"read_state", "write_state"} <= generated

    def test_event_and_state_helpers(self):
        gate = Gate()
        assert gate.is_opened
        assert not gate.is_closed
        assert callable(gate.close)
        assert callable(gate.close_strict)
        assert gate.may_close()
        assert not gate.may_open()

    def test_record_methods_are_not_replaced(self):
        # "find" is both a state of Simple and a Record classmethod.
        assert Simple.find.__func__ is Record.find.__func__
        assert "find" not in vars(Simple)[GENERATED_MEMBERS]


# ======================================================================
# Inheritance
# ======================================================================


class TestInheritance:
    def test_subclass_shares_definition(self):
        assert Derivate.machine is Simple.machine
        assert Derivate.machine.states == Simple.machine.states
        assert Derivate.machine.events == Simple.machine.events
        assert Derivate.machine.column == "status"

    def test_subclass_instances_use_parent_definition(self):
        derivate = Derivate()
        assert derivate.current_state == "unknown_scope"
        assert derivate.lose() is True

    def test_extend_adds_without_touching_parent(self):
        assert SimpleExtended.machine.state_names == ["unknown_scope", "find", "archived"]
        assert Simple.machine.state_names == ["unknown_scope", "find"]
        assert "archive" not in Simple.machine.events
        assert SimpleExtended.machine.column == "status"
        assert not hasattr(Simple, "archived")
        assert not hasattr(Simple(), "archive")

    def test_extended_machine_differs_from_parent(self):
        assert SimpleExtended.machine != Simple.machine
        assert SimpleExtended.machine.owner is SimpleExtended

    def test_extend_cannot_redeclare_inherited_state(self):
        child = Simple.machine.extend()
        with pytest.raises(DefinitionError):
            child.state("find")

    def test_extend_overrides_options(self):
        child = Validator.machine.extend(whiny_persistence=True)
        assert child.config.whiny_persistence is True
        assert Validator.machine.config.whiny_persistence is False


# ======================================================================
# Initial states
# ======================================================================


class TestInitialState:
    def test_flagged_initial_state(self):
        assert Gate().current_state == "opened"

    def test_first_declared_state_when_none_flagged(self):
        assert Simple().current_state == "unknown_scope"

    def test_machine_level_resolver(self):
        assert Thief(skilled=True).current_state == "rich"
        assert Thief(skilled=False).current_state == "jailed"

    def test_state_predicates_then_flag(self):
        assert ConditionalThief(skilled=True).current_state == "rich"
        assert ConditionalThief(skilled=False).current_state == "jailed"
