"""Reconciliation of desired rules against the live rule set.

Planning is pure: it works on a snapshot of the live rules and simulates
each change on a working copy, so that the position of every command
accounts for the commands run before it. Applying runs the planned
commands in order and stops at the first failure.
"""

from dataclasses import dataclass, field
from enum import Enum

from fwm.core.context import ExecutionContext
from fwm.services.attributes import AttributeTable
from fwm.services.deletion import delete_args
from fwm.services.iptables import IptablesProvider
from fwm.services.ordering import insert_position
from fwm.services.rule import ENSURE_ABSENT, Rule
from fwm.services.synthesizer import insert_args, update_args


class ChangeKind(str, Enum):
    """Kind of change to the live rule set."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class RuleChange:
    """One planned iptables invocation."""
    kind: ChangeKind
    rule: Rule
    args: list[str]
    changed: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        text = f"{self.kind.value} {self.rule.name} [{self.rule.table}/{self.rule.chain}]"
        if self.changed:
            text += f" ({', '.join(self.changed)})"
        return text


def plan_changes(
    desired: list[Rule],
    observed: list[Rule],
    attributes: AttributeTable,
    *,
    purge: bool = False,
) -> list[RuleChange]:
    """Work out the commands that turn ``observed`` into ``desired``.

    Deletions come first, then creates and updates in name order per chain.
    With ``purge``, live rules missing from ``desired`` are deleted, but
    only in chains that ``desired`` manages.

    Args:
        desired: Rules from the rules file
        observed: Rules parsed from iptables-save
        attributes: Attribute table
        purge: Delete unmanaged rules

    Returns:
        Changes in the order they must run
    """
    by_key: dict[tuple, Rule] = {}
    for rule in observed:
        by_key.setdefault(rule.key, rule)

    working = list(observed)
    changes: list[RuleChange] = []

    def remove(rule: Rule) -> None:
        nonlocal working
        changes.append(RuleChange(ChangeKind.DELETE, rule, delete_args(rule.line, rule.table)))
        working = [r for r in working if r is not rule]

    for rule in desired:
        if rule.ensure == ENSURE_ABSENT and rule.key in by_key:
            remove(by_key[rule.key])

    if purge:
        desired_keys = {rule.key for rule in desired}
        managed_chains = {(rule.table, rule.chain) for rule in desired}
        for rule in observed:
            if (rule.table, rule.chain) in managed_chains and rule.key not in desired_keys:
                remove(rule)

    present = [rule for rule in desired if rule.ensure != ENSURE_ABSENT]
    for rule in sorted(present, key=lambda r: r.key):
        current = by_key.get(rule.key)
        position = insert_position(rule.name, rule.chain, rule.table, working)

        if current is None:
            changes.append(RuleChange(
                ChangeKind.CREATE, rule, insert_args(rule, position, attributes),
            ))
            working.append(rule)
            continue

        changed = rule.changed_attributes(current)
        if changed:
            changes.append(RuleChange(
                ChangeKind.UPDATE, rule, update_args(rule, position, attributes), changed,
            ))

    return changes


class Reconciler:
    """Brings the live rule set in line with a list of desired rules."""

    def __init__(self, ctx: ExecutionContext, provider: IptablesProvider) -> None:
        self.ctx = ctx
        self.provider = provider

    def plan(self, desired: list[Rule], *, purge: bool = False) -> list[RuleChange]:
        """Plan changes against the current live rules."""
        observed = self.provider.instances()
        changes = plan_changes(desired, observed, self.provider.attributes, purge=purge)
        self.ctx.console.debug(f"Planned {len(changes)} change(s) for {len(desired)} rule(s)")
        return changes

    def apply(self, changes: list[RuleChange]) -> int:
        """Run planned changes in order.

        Returns:
            Number of changes applied

        Raises:
            ExecutionError: If iptables rejects a change; later changes
                are not attempted
        """
        applied = 0
        for change in changes:
            self.provider.run(change.args, description=f"{change.kind.value.title()} rule {change.rule.name}")
            applied += 1
        return applied

    def reconcile(self, desired: list[Rule], *, purge: bool = False) -> int:
        """Plan and apply in one pass; returns the number of changes."""
        changes = self.plan(desired, purge=purge)
        if not changes:
            self.ctx.console.info("All rules already in sync")
            return 0
        return self.apply(changes)
