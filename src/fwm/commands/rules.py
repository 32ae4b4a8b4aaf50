"""Rule commands.

- list: show live rules as parsed from iptables-save
- parse: parse a saved dump file
- plan: show the changes needed to reach the rules file
- apply: make those changes
- flush: empty a chain
"""

import os
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape

from fwm.core import (
    FWMError,
    console,
    ExecutionContext,
    create_context,
    CommandExecutor,
    ConfigurationError,
)
from fwm.services.attributes import build_attribute_table
from fwm.services.desired_state import dump_rules, load_desired_rules
from fwm.services.iptables import IptablesProvider
from fwm.services.parser import parse_dump
from fwm.services.reconcile import ChangeKind, Reconciler, RuleChange
from fwm.services.rule import Rule


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", "-n", help="Show commands without running them"),
]

YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Skip confirmation prompts"),
]

VerboseOption = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
]

QuietOption = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Only show errors"),
]

NoColorOption = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output"),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to configuration file", dir_okay=False),
]

RulesOption = Annotated[
    Optional[Path],
    typer.Option("--rules", "-r", help="Rules file (default: reconcile.rules_file)", dir_okay=False),
]

PurgeOption = Annotated[
    bool,
    typer.Option("--purge", help="Delete unmanaged rules in managed chains"),
]

TableOption = Annotated[
    Optional[str],
    typer.Option("--table", "-t", help="Only this table"),
]

YamlOption = Annotated[
    bool,
    typer.Option("--yaml", help="Print rules in rules file format"),
]

CHANGE_STYLES = {
    ChangeKind.CREATE: "green",
    ChangeKind.UPDATE: "yellow",
    ChangeKind.DELETE: "red",
}


def _get_provider(ctx: ExecutionContext) -> IptablesProvider:
    """Create the iptables provider for a context."""
    return IptablesProvider(ctx, CommandExecutor(ctx))


def _check_root(ctx: ExecutionContext) -> None:
    """Check for root privileges."""
    if os.geteuid() != 0 and not ctx.dry_run:
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint("Run with sudo, or preview with --dry-run")
        raise typer.Exit(6)


def handle_error(error: FWMError) -> None:
    """Handle an FWMError by printing formatted error and exiting."""
    # Messages quote rule names and stderr, which may hold "["
    console.error(escape(error.message))

    if error.details:
        for detail in error.details:
            console.print(f"  [dim]{escape(str(detail))}[/dim]")

    if error.hint:
        console.hint(escape(error.hint))

    raise typer.Exit(error.exit_code)


def _match_summary(rule: Rule) -> str:
    parts = []
    if rule.source:
        parts.append(f"src {rule.source}")
    if rule.destination:
        parts.append(f"dst {rule.destination}")
    if rule.iniface:
        parts.append(f"in {rule.iniface}")
    if rule.outiface:
        parts.append(f"out {rule.outiface}")
    if rule.dport:
        parts.append(f"dport {','.join(rule.dport)}")
    if rule.sport:
        parts.append(f"sport {','.join(rule.sport)}")
    if rule.port:
        parts.append(f"port {','.join(rule.port)}")
    if rule.state:
        parts.append(f"state {','.join(rule.state)}")
    if rule.invert:
        parts.append("! " + ",".join(sorted(rule.invert)))
    return " ".join(parts) or "-"


def _print_rules(ctx: ExecutionContext, rules: list[Rule], title: str) -> None:
    rows = [
        [
            str(rule.sequence or ""),
            rule.table or "-",
            rule.chain,
            escape(rule.name),
            rule.proto or "-",
            escape(_match_summary(rule)),
            rule.target or "-",
        ]
        for rule in rules
    ]
    ctx.console.table(
        title,
        ["#", "Table", "Chain", "Name", "Proto", "Match", "Target"],
        rows,
    )


def _print_changes(
    ctx: ExecutionContext,
    provider: IptablesProvider,
    changes: list[RuleChange],
) -> None:
    rows = []
    for change in changes:
        style = CHANGE_STYLES[change.kind]
        rows.append([
            f"[{style}]{change.kind.value}[/{style}]",
            f"{change.rule.table}/{change.rule.chain}",
            escape(change.rule.name),
            ", ".join(change.changed) or "-",
        ])
    ctx.console.table("Planned Changes", ["Change", "Chain", "Rule", "Attributes"], rows)

    if ctx.is_verbose:
        ctx.console.print()
        for change in changes:
            ctx.console.command(provider.command_line(change.args))


def _load_desired(ctx: ExecutionContext, rules_file: Optional[Path]) -> list[Rule]:
    settings = ctx.config.reconcile
    path = rules_file or settings.rules_file
    ctx.console.verbose(f"Loading rules from {escape(str(path))}")
    return load_desired_rules(path, default_table=settings.default_table)


# =============================================================================
# Commands
# =============================================================================

def list_rules(
    table: TableOption = None,
    chain: Annotated[
        Optional[str],
        typer.Option("--chain", help="Only this chain"),
    ] = None,
    as_yaml: YamlOption = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """List live rules.

    Reads the rule set with iptables-save and shows each rule the way it
    is compared against the rules file.

    [bold]Examples:[/bold]

        fwm list
        fwm list --table nat
        fwm list --chain INPUT --yaml
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        provider = _get_provider(ctx)
        rules = provider.instances()
        if table:
            rules = [rule for rule in rules if rule.table == table]
        if chain:
            rules = [rule for rule in rules if rule.chain == chain]

        if as_yaml:
            ctx.console.print(dump_rules(rules), markup=False, soft_wrap=True)
            return

        if not rules:
            ctx.console.info("No rules found")
            return

        _print_rules(ctx, rules, "Live Rules")

    except FWMError as e:
        handle_error(e)


def parse_file(
    dump_file: Annotated[
        Path,
        typer.Argument(help="File holding iptables-save output", exists=True, dir_okay=False),
    ],
    as_yaml: YamlOption = False,
    with_lines: Annotated[
        bool,
        typer.Option("--lines", help="Include the raw dump line of each rule"),
    ] = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Parse a saved iptables-save dump.

    Does not touch the live rule set. The iptables version used for the
    CONNMARK flag comes from iptables.version in the configuration.

    [bold]Examples:[/bold]

        iptables-save > rules.dump
        fwm parse rules.dump
        fwm parse rules.dump --yaml > rules.yaml
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        try:
            text = dump_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read dump file: {dump_file}", details=[str(e)]) from e

        attributes = build_attribute_table(ctx.config.iptables.version)
        rules = parse_dump(text, attributes)

        if as_yaml:
            ctx.console.print(dump_rules(rules, include_line=with_lines), markup=False, soft_wrap=True)
            return

        if not rules:
            ctx.console.info(f"No rules in {escape(str(dump_file))}")
            return

        _print_rules(ctx, rules, escape(str(dump_file)))

    except FWMError as e:
        handle_error(e)


def plan(
    rules_file: RulesOption = None,
    purge: PurgeOption = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show the changes needed to reach the rules file.

    Nothing is changed. Use -v to also print the iptables commands.

    [bold]Examples:[/bold]

        fwm plan
        fwm plan --rules ./rules.yaml --purge -v
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        desired = _load_desired(ctx, rules_file)
        provider = _get_provider(ctx)
        reconciler = Reconciler(ctx, provider)
        changes = reconciler.plan(desired, purge=purge or ctx.config.reconcile.purge_unmanaged)

        if not changes:
            ctx.console.success("Rules are in sync")
            return

        _print_changes(ctx, provider, changes)

    except FWMError as e:
        handle_error(e)


def apply(
    rules_file: RulesOption = None,
    purge: PurgeOption = False,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Bring the live rules in line with the rules file.

    Changes run one iptables command at a time. The first failing command
    stops the run; changes made before it stay in place.

    [bold]Examples:[/bold]

        fwm apply --dry-run
        sudo fwm apply --yes
        sudo fwm apply --rules ./rules.yaml --purge
    """
    ctx = create_context(
        dry_run=dry_run, yes=yes, verbose=verbose, quiet=quiet, no_color=no_color, config=config,
    )
    _check_root(ctx)

    try:
        desired = _load_desired(ctx, rules_file)
        provider = _get_provider(ctx)
        reconciler = Reconciler(ctx, provider)
        changes = reconciler.plan(desired, purge=purge or ctx.config.reconcile.purge_unmanaged)

        if not changes:
            ctx.console.success("Rules are in sync")
            return

        _print_changes(ctx, provider, changes)

        if not ctx.dry_run and ctx.should_confirm:
            if not ctx.console.confirm(f"Apply {len(changes)} change(s)?"):
                ctx.console.warn("Operation cancelled")
                raise typer.Exit(0)

        applied = reconciler.apply(changes)

        if ctx.dry_run:
            ctx.console.info(f"Dry run: {applied} change(s) not applied")
        else:
            ctx.console.success(f"Applied {applied} change(s)")

    except FWMError as e:
        handle_error(e)


def flush(
    chain: Annotated[str, typer.Argument(help="Chain to empty")],
    table: Annotated[str, typer.Option("--table", "-t", help="Table holding the chain")] = "filter",
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Remove every rule from a chain.

    [bold]Examples:[/bold]

        sudo fwm flush INPUT
        sudo fwm flush PREROUTING --table nat --yes
    """
    ctx = create_context(dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color, config=config)
    _check_root(ctx)

    try:
        if not ctx.dry_run and ctx.should_confirm:
            if not ctx.console.confirm(f"Delete all rules in {escape(table)}/{escape(chain)}?"):
                ctx.console.warn("Operation cancelled")
                raise typer.Exit(0)

        provider = _get_provider(ctx)
        provider.flush(chain, table)

        if not ctx.dry_run:
            ctx.console.success(f"Flushed {escape(table)}/{escape(chain)}")

    except FWMError as e:
        handle_error(e)
