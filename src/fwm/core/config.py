"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides
- Configuration initialization and display
"""

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fwm.core.exceptions import ConfigurationError


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/fwm/config.yaml")
DEFAULT_RULES_PATH = Path("/etc/fwm/rules.yaml")

VERSION_PATTERN = re.compile(r"^\d+(\.\d+)*$")


class IptablesConfig(BaseModel):
    """How the iptables tools are invoked."""

    iptables_cmd: str = "/sbin/iptables"
    iptables_save_cmd: str = "/sbin/iptables-save"
    # Pin the version instead of asking `iptables --version`
    version: Optional[str] = None
    wait_for_lock: bool = True

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not VERSION_PATTERN.match(v):
            raise ValueError("version must look like '1.8.7'")
        return v


class ReconcileConfig(BaseModel):
    """Reconciliation behaviour."""

    rules_file: Path = DEFAULT_RULES_PATH
    purge_unmanaged: bool = False
    default_table: str = "filter"

    @field_validator("default_table")
    @classmethod
    def validate_table(cls, v: str) -> str:
        valid_tables = {"filter", "nat", "mangle", "raw", "security"}
        if v not in valid_tables:
            raise ValueError(f"default_table must be one of: {sorted(valid_tables)}")
        return v


class MachineConfig(BaseModel):
    """Root configuration model, loaded from /etc/fwm/config.yaml."""

    iptables: IptablesConfig = Field(default_factory=IptablesConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)

    @classmethod
    def load(cls, path: Path) -> "MachineConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: fwm config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "MachineConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvironmentOverrides(BaseSettings):
    """Overrides read from the environment, applied on top of the file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    fwm_rules_file: Optional[Path] = Field(None, alias="FWM_RULES_FILE")
    fwm_iptables_cmd: Optional[str] = Field(None, alias="FWM_IPTABLES_CMD")
    fwm_iptables_save_cmd: Optional[str] = Field(None, alias="FWM_IPTABLES_SAVE_CMD")


class AppConfig:
    """Application configuration combining config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[MachineConfig] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or MachineConfig.load_or_default(self.config_path)
        self._overrides = EnvironmentOverrides()

    @property
    def config(self) -> MachineConfig:
        """Get the machine configuration."""
        return self._config

    @property
    def iptables(self) -> IptablesConfig:
        """iptables settings with environment overrides applied."""
        base = self._config.iptables
        updates = {}
        if self._overrides.fwm_iptables_cmd:
            updates["iptables_cmd"] = self._overrides.fwm_iptables_cmd
        if self._overrides.fwm_iptables_save_cmd:
            updates["iptables_save_cmd"] = self._overrides.fwm_iptables_save_cmd
        return base.model_copy(update=updates) if updates else base

    @property
    def reconcile(self) -> ReconcileConfig:
        """Reconcile settings with environment overrides applied."""
        base = self._config.reconcile
        if self._overrides.fwm_rules_file:
            return base.model_copy(update={"rules_file": self._overrides.fwm_rules_file})
        return base


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# Firewall Manager Configuration

# How iptables is invoked
iptables:
  iptables_cmd: /sbin/iptables
  iptables_save_cmd: /sbin/iptables-save
  # version: "1.8.7"   # skip `iptables --version` detection
  wait_for_lock: true  # pass -w so a held xtables lock is waited for

# Reconciliation
reconcile:
  rules_file: /etc/fwm/rules.yaml
  purge_unmanaged: false  # delete live rules missing from rules_file
  default_table: filter
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o644)
