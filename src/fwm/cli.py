"""Main CLI entry point using Typer.

This module defines the root CLI application and global options.
Rule commands are registered from fwm.commands.rules.
"""

from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from fwm import __version__
from fwm.core.context import create_context
from fwm.core.config import (
    AppConfig,
    MachineConfig,
    get_example_config,
    init_config,
)
from fwm.core.exceptions import FWMError
from fwm.commands.rules import (
    ConfigOption,
    NoColorOption,
    VerboseOption,
    apply,
    flush,
    handle_error,
    list_rules,
    parse_file,
    plan,
)


# Create the main Typer app
app = typer.Typer(
    name="fwm",
    help="Firewall Manager - declarative iptables rules.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")

app.command("list")(list_rules)
app.command("parse")(parse_file)
app.command("plan")(plan)
app.command("apply")(apply)
app.command("flush")(flush)


ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Overwrite an existing file.",
        is_flag=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"fwm version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Firewall Manager - declarative iptables rules.

    Keeps the live iptables rules in line with a YAML rules file. Each
    rule is named; the name is stored as the rule's comment and decides
    where in its chain the rule goes.

    [bold]Examples:[/bold]
        fwm list
        fwm plan --rules rules.yaml
        sudo fwm apply --rules rules.yaml
        fwm config show
    """
    pass


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the loaded configuration with environment overrides applied.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {escape(str(ctx.config_path))}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        ctx.console.summary("Effective settings", {
            "iptables": app_config.iptables.iptables_cmd,
            "iptables-save": app_config.iptables.iptables_save_cmd,
            "Rules file": app_config.reconcile.rules_file,
        })

    except FWMError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with defaults and comments.
    """
    ctx = create_context(no_color=no_color, config=config)
    config_path = ctx.config_path

    try:
        init_config(config_path, force=force)
        ctx.console.success(f"Configuration file created: {escape(str(config_path))}")
        ctx.console.info("Edit the file to customize settings, then run commands.")

    except FWMError as e:
        handle_error(e)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Validate configuration file.

    Checks that the configuration file exists, is valid YAML,
    and all values pass validation.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        # Raises ConfigurationError if missing or invalid
        loaded = MachineConfig.load(ctx.config_path)
        app_config = AppConfig(config_path=ctx.config_path, config=loaded)

        ctx.console.success(f"Configuration is valid: {escape(str(ctx.config_path))}")

        if ctx.is_verbose:
            ctx.console.yaml(app_config.config.to_yaml())

        if not app_config.reconcile.rules_file.exists():
            ctx.console.warn(f"Rules file does not exist yet: {escape(str(app_config.reconcile.rules_file))}")

    except FWMError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print example configuration file."""
    ctx = create_context(no_color=no_color)
    ctx.console.print(get_example_config(), markup=False, soft_wrap=True)


# Entry point
if __name__ == "__main__":
    app()
