"""Unit tests for configuration loading."""

from pathlib import Path

import pytest

from fwm.core.config import (
    AppConfig,
    IptablesConfig,
    MachineConfig,
    ReconcileConfig,
    get_example_config,
    init_config,
)
from fwm.core.exceptions import ConfigurationError


class TestMachineConfig:
    """Tests for MachineConfig."""

    def test_defaults(self):
        """Defaults should point at the system binaries."""
        config = MachineConfig()
        assert config.iptables.iptables_cmd == "/sbin/iptables"
        assert config.iptables.iptables_save_cmd == "/sbin/iptables-save"
        assert config.iptables.wait_for_lock is True
        assert config.reconcile.rules_file == Path("/etc/fwm/rules.yaml")
        assert config.reconcile.purge_unmanaged is False

    def test_load(self, tmp_path):
        """Values should load from YAML."""
        path = tmp_path / "config.yaml"
        path.write_text("iptables:\n  version: '1.4.0'\nreconcile:\n  purge_unmanaged: true\n")

        config = MachineConfig.load(path)
        assert config.iptables.version == "1.4.0"
        assert config.reconcile.purge_unmanaged is True

    def test_load_missing(self, tmp_path):
        """A missing file should raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            MachineConfig.load(tmp_path / "missing.yaml")

    def test_load_invalid_yaml(self, tmp_path):
        """Broken YAML should raise ConfigurationError."""
        path = tmp_path / "config.yaml"
        path.write_text("iptables: [\n")
        with pytest.raises(ConfigurationError):
            MachineConfig.load(path)

    def test_load_invalid_value(self, tmp_path):
        """Invalid values should raise ConfigurationError."""
        path = tmp_path / "config.yaml"
        path.write_text("reconcile:\n  default_table: bogus\n")
        with pytest.raises(ConfigurationError) as exc:
            MachineConfig.load(path)
        assert "Invalid configuration" in str(exc.value)

    def test_load_or_default(self, tmp_path):
        """A missing file should give defaults."""
        config = MachineConfig.load_or_default(tmp_path / "missing.yaml")
        assert config == MachineConfig()

    def test_to_yaml(self):
        """to_yaml should leave out unset values."""
        text = MachineConfig().to_yaml()
        assert "iptables_cmd: /sbin/iptables" in text
        assert "version" not in text


class TestValidators:
    """Tests for field validators."""

    def test_version_format(self):
        """Versions must be dotted numbers."""
        IptablesConfig(version="1.8.7")
        with pytest.raises(ValueError):
            IptablesConfig(version="latest")

    def test_default_table(self):
        """default_table must be a real table."""
        ReconcileConfig(default_table="nat")
        with pytest.raises(ValueError):
            ReconcileConfig(default_table="bogus")


class TestAppConfig:
    """Tests for AppConfig environment overrides."""

    def test_no_overrides(self, tmp_path, monkeypatch):
        """Without overrides the file values should be used."""
        monkeypatch.delenv("FWM_RULES_FILE", raising=False)
        monkeypatch.delenv("FWM_IPTABLES_CMD", raising=False)
        monkeypatch.delenv("FWM_IPTABLES_SAVE_CMD", raising=False)
        monkeypatch.chdir(tmp_path)

        app_config = AppConfig(config_path=tmp_path / "missing.yaml")
        assert app_config.iptables.iptables_cmd == "/sbin/iptables"
        assert app_config.reconcile.rules_file == Path("/etc/fwm/rules.yaml")

    def test_env_overrides(self, tmp_path, monkeypatch):
        """FWM_* variables should override the file."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("FWM_RULES_FILE", str(tmp_path / "rules.yaml"))
        monkeypatch.setenv("FWM_IPTABLES_CMD", "/usr/sbin/iptables-legacy")
        monkeypatch.setenv("FWM_IPTABLES_SAVE_CMD", "/usr/sbin/iptables-legacy-save")

        app_config = AppConfig(config_path=tmp_path / "missing.yaml")
        assert app_config.reconcile.rules_file == tmp_path / "rules.yaml"
        assert app_config.iptables.iptables_cmd == "/usr/sbin/iptables-legacy"
        assert app_config.iptables.iptables_save_cmd == "/usr/sbin/iptables-legacy-save"
        # The loaded file values are untouched
        assert app_config.config.iptables.iptables_cmd == "/sbin/iptables"


class TestInitConfig:
    """Tests for init_config."""

    def test_creates_file(self, tmp_path):
        """init_config should write the example."""
        path = tmp_path / "fwm" / "config.yaml"
        init_config(path)
        assert path.read_text() == get_example_config()
        MachineConfig.load(path)

    def test_existing_file(self, tmp_path):
        """An existing file should not be overwritten without force."""
        path = tmp_path / "config.yaml"
        path.write_text("# mine\n")
        with pytest.raises(ConfigurationError):
            init_config(path)
        init_config(path, force=True)
        assert path.read_text() == get_example_config()
