"""Per-command runtime settings.

Each CLI command builds one ExecutionContext from its options and hands it
to the executor, the iptables provider and the reconciler.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from fwm.core.config import AppConfig, DEFAULT_CONFIG_PATH
from fwm.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Flags of one fwm invocation.

    Attributes:
        dry_run: Print iptables changes instead of making them
        yes: Apply without asking
        verbosity: 0 (quiet) to 3 (debug)
        no_color: Plain output
        config_path: YAML configuration to load
    """

    dry_run: bool = False
    yes: bool = False
    verbosity: int = 1
    no_color: bool = False

    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    # Loaded on first access
    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> AppConfig:
        """Configuration file merged with FWM_* overrides."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE

    @property
    def should_confirm(self) -> bool:
        """False when --yes was given."""
        return not self.yes


def create_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Build the context for a command from its CLI options.

    ``--quiet`` wins over any number of ``-v``.
    """
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        dry_run=dry_run,
        yes=yes,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
