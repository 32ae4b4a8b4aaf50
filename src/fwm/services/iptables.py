"""iptables provider.

Reads the live rule set with iptables-save and changes it one rule at a
time with ``iptables -I``, ``-R`` and ``-D``. Positions are always worked
out against a fresh listing, because every insert or delete shifts the
rules after it.
"""

import re
from typing import Optional

from fwm.core.config import IptablesConfig
from fwm.core.context import ExecutionContext
from fwm.core.exceptions import FirewallError
from fwm.core.executor import CommandExecutor, CommandResult
from fwm.services.attributes import AttributeTable, build_attribute_table
from fwm.services.deletion import delete_args
from fwm.services.ordering import insert_position
from fwm.services.parser import parse_dump
from fwm.services.rule import Rule
from fwm.services.synthesizer import insert_args, update_args


VERSION_OUTPUT_PATTERN = re.compile(r"v(\d+(?:\.\d+)*)")


class IptablesProvider:
    """Safe interface to the live iptables rule set.

    Features:
    - Rule listing via iptables-save
    - Name-ordered insert and replace
    - Delete by the rule's own dump line
    - Dry-run mode support
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        settings: Optional[IptablesConfig] = None,
        attributes: Optional[AttributeTable] = None,
    ) -> None:
        """Initialize the provider.

        Args:
            ctx: Execution context
            executor: Command executor
            settings: iptables settings (default: from the context config)
            attributes: Attribute table (default: built for the detected version)
        """
        self.ctx = ctx
        self.executor = executor
        self.settings = settings if settings is not None else ctx.config.iptables
        self._attributes = attributes
        self._version: Optional[str] = None
        self._version_checked = False

    # =========================================================================
    # Detection
    # =========================================================================

    def iptables_version(self) -> Optional[str]:
        """Version of the iptables binary, e.g. '1.8.7'.

        Returns:
            Version string, or None if it cannot be determined
        """
        if self.settings.version:
            return self.settings.version

        if not self._version_checked:
            self._version_checked = True
            result = self.executor.run(
                [self.settings.iptables_cmd, "--version"],
                check=False,
                read_only=True,
            )
            match = VERSION_OUTPUT_PATTERN.search(result.stdout)
            if match:
                self._version = match.group(1)
            else:
                self.ctx.console.warn("Could not detect iptables version, assuming >= 1.4.1")
        return self._version

    @property
    def attributes(self) -> AttributeTable:
        """Attribute table for the running iptables (built once)."""
        if self._attributes is None:
            self._attributes = build_attribute_table(self.iptables_version())
            self.ctx.console.debug(f"Using mark flag {self._attributes.mark_flag}")
        return self._attributes

    # =========================================================================
    # Listing
    # =========================================================================

    def instances(self) -> list[Rule]:
        """All rules currently loaded, in dump order."""
        result = self.executor.run(
            [self.settings.iptables_save_cmd],
            read_only=True,
        )
        rules = parse_dump(result.stdout, self.attributes)
        self.ctx.console.debug(f"Found {len(rules)} rule(s)")
        return rules

    def find(self, rule: Rule, observed: Optional[list[Rule]] = None) -> Optional[Rule]:
        """Live rule with the same table, chain and name as ``rule``."""
        if observed is None:
            observed = self.instances()
        for candidate in observed:
            if candidate.key == rule.key:
                return candidate
        return None

    def exists(self, rule: Rule) -> bool:
        """Check if a rule with this name is loaded in its chain."""
        return self.find(rule) is not None

    def insert_order(self, rule: Rule, observed: Optional[list[Rule]] = None) -> int:
        """Position the rule belongs at among the live rules of its chain."""
        if observed is None:
            observed = self.instances()
        return insert_position(rule.name, rule.chain, rule.table, observed)

    # =========================================================================
    # Rule Management
    # =========================================================================

    def insert(self, rule: Rule) -> CommandResult:
        """Insert a rule at its name-ordered position."""
        args = insert_args(rule, self.insert_order(rule), self.attributes)
        return self.run(args, description=f"Inserting rule {rule.name}")

    def update(self, rule: Rule) -> CommandResult:
        """Replace the live rule of the same name with ``rule``."""
        args = update_args(rule, self.insert_order(rule), self.attributes)
        return self.run(args, description=f"Updating rule {rule.name}")

    def delete(self, rule: Rule) -> CommandResult:
        """Delete a live rule.

        Args:
            rule: Observed rule (with its dump line) or a desired rule to
                look up by name

        Raises:
            FirewallError: If no live rule matches
        """
        observed = rule if rule.line else self.find(rule)
        if observed is None or not observed.line:
            raise FirewallError(
                f"Rule not found: {rule.name}",
                rule=rule.name,
                chain=rule.chain,
                hint=f"Check the rule is loaded in table {rule.table}",
            )

        args = delete_args(observed.line, observed.table)
        return self.run(args, description=f"Deleting rule {rule.name}")

    def flush(self, chain: str, table: str = "filter") -> CommandResult:
        """Remove every rule from a chain."""
        return self.run(["-t", table, "-F", chain], description=f"Flushing {table}/{chain}")

    def command_line(self, args: list[str]) -> list[str]:
        """Full iptables invocation for ``args``."""
        command = [self.settings.iptables_cmd]
        # Wait for the xtables lock instead of failing on a concurrent holder
        if self.settings.wait_for_lock:
            command.append("-w")
        return command + args

    def run(self, args: list[str], *, description: Optional[str] = None) -> CommandResult:
        """Run iptables with ``args``.

        Raises:
            ExecutionError: If iptables exits non-zero
        """
        return self.executor.run(self.command_line(args), description=description)
