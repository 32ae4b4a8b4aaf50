"""Command execution.

Provides:
- Safe command execution with output capture
- Dry-run mode support for mutating commands
"""

import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional

from rich.markup import escape

from fwm.core.context import ExecutionContext
from fwm.core.exceptions import ExecutionError


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0


class CommandExecutor:
    """Runs iptables and iptables-save on behalf of the provider.

    Mutating commands are only printed in dry-run mode. Read-only commands
    (listing, version checks) still run so that a dry run can plan against
    the live rule set.
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        read_only: bool = False,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """Execute a command without a shell.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            read_only: Run even in dry-run mode
            timeout: Command timeout in seconds

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
        """
        if description:
            self.ctx.console.step(escape(description))

        cmd_display = shlex.join(command)
        self.ctx.console.debug(f"Running: {escape(cmd_display)}")

        if self.ctx.dry_run and not read_only:
            self.ctx.console.dry_run_msg(f"Run: {escape(cmd_display)}")
            return CommandResult(
                command=command,
                return_code=0,
                stdout="",
                stderr="",
            )

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
            )
        except FileNotFoundError as e:
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                hint="Check iptables_cmd / iptables_save_cmd in the configuration",
            ) from e

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=result.stderr.strip() or None,
            )

        return CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
