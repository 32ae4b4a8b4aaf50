"""Custom exceptions for the Firewall Manager CLI.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class FWMError(Exception):
    """Base exception for all firewall manager errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(FWMError):
    """Configuration file or settings errors.

    Raised when:
    - Config or rules file not found or unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    - Inconsistent attribute table
    """
    exit_code = 2


class ValidationError(FWMError):
    """Input validation errors.

    Raised when:
    - A desired rule has no name
    - A desired rule sets both action and jump
    - Unknown rule attributes or actions
    """
    exit_code = 3


class ExecutionError(FWMError):
    """Command execution failures.

    Raised when:
    - iptables returns non-zero exit code
    - iptables-save cannot be run
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class FirewallError(FWMError):
    """Firewall/iptables errors.

    Raised when:
    - A rule cannot be found for update or delete
    - A rule has no raw line to delete from
    """
    exit_code = 15

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        chain: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.rule = rule
        self.chain = chain
