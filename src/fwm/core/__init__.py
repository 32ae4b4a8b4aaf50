"""Core framework components for the Firewall Manager CLI."""

from fwm.core.exceptions import (
    FWMError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    FirewallError,
)

from fwm.core.context import ExecutionContext, create_context
from fwm.core.output import console, Console, Verbosity
from fwm.core.config import AppConfig, MachineConfig
from fwm.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "FWMError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "FirewallError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "MachineConfig",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
