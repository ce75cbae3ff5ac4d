"""Tests for persistence policy configuration.

Covers:
  - MachineConfig defaults and merge()
  - load_machine_config from an explicit path, RECORDFSM_CONFIG, or defaults
  - Unknown keys ignored with a warning; non-object JSON rejected
"""

from __future__ import annotations

import dataclasses
import json
import logging

import pytest

from recordfsm import MachineConfig, StateMachine, load_machine_config
from recordfsm.config import CONFIG_ENV_VAR


class TestMachineConfig:
    def test_defaults(self):
        config = MachineConfig()
        assert config.enforce_validity is True
        assert config.whole_transaction is True
        assert config.requires_new_transaction is True
        assert config.whiny_transitions is True
        assert config.whiny_persistence is False
        assert config.create_scopes is True

    def test_merge_returns_copy(self):
        config = MachineConfig()
        merged = config.merge(whiny_persistence=True)
        assert merged.whiny_persistence is True
        assert config.whiny_persistence is False

    def test_merge_rejects_unknown(self):
        with pytest.raises(TypeError, match="colour"):
            MachineConfig().merge(colour=True)

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            MachineConfig().enforce_validity = False


class TestLoadMachineConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_machine_config(tmp_path / "missing.json") == MachineConfig()

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "recordfsm.json"
        path.write_text(json.dumps({"enforce_validity": False, "whiny_persistence": True}))
        config = load_machine_config(path)
        assert config.enforce_validity is False
        assert config.whiny_persistence is True
        assert config.whole_transaction is True

    def test_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "from_env.json"
        path.write_text(json.dumps({"create_scopes": False}))
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_machine_config().create_scopes is False

    def test_default_path_relative_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "recordfsm.json").write_text(json.dumps({"whiny_transitions": False}))
        assert load_machine_config().whiny_transitions is False

    def test_unknown_keys_warn(self, tmp_path, caplog):
        path = tmp_path / "recordfsm.json"
        path.write_text(json.dumps({"bogus": 1, "enforce_validity": False}))
        with caplog.at_level(logging.WARNING, logger="recordfsm.config"):
            config = load_machine_config(path)
        assert config.enforce_validity is False
        assert "bogus" in caplog.text

    def test_non_boolean_values_ignored(self, tmp_path, caplog):
        path = tmp_path / "recordfsm.json"
        path.write_text(json.dumps({"enforce_validity": "false", "create_scopes": 0}))
        with caplog.at_level(logging.WARNING, logger="recordfsm.config"):
            config = load_machine_config(path)
        assert config.enforce_validity is True
        assert config.create_scopes is True
        assert "enforce_validity='false'" in caplog.text
        assert "create_scopes=0" in caplog.text

    def test_non_object_rejected(self, tmp_path):
        path = tmp_path / "recordfsm.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError, match="JSON object"):
            load_machine_config(path)

    def test_machine_uses_loaded_config(self, tmp_path):
        path = tmp_path / "recordfsm.json"
        path.write_text(json.dumps({"enforce_validity": False}))
        machine = StateMachine(config=load_machine_config(path), whiny_persistence=True)
        assert machine.config.enforce_validity is False
        assert machine.config.whiny_persistence is True
