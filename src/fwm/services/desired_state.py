"""Desired rule set stored as YAML.

File format::

    rules:
      - name: "100 allow ssh"
        proto: tcp
        dport: [22]
        action: accept
      - name: "900 log dropped"
        jump: LOG
        log_prefix: "dropped: "
"""

from pathlib import Path

import yaml

from fwm.core.exceptions import ConfigurationError, ValidationError
from fwm.services.rule import Rule


def load_desired_rules(path: Path, *, default_table: str = "filter") -> list[Rule]:
    """Load desired rules from a YAML file.

    Args:
        path: Rules file
        default_table: Table for rules that do not name one

    Returns:
        Rules in file order

    Raises:
        ConfigurationError: If the file is missing, unreadable or not YAML
        ValidationError: If a rule is invalid or a name is used twice
    """
    if not path.exists():
        raise ConfigurationError(
            f"Rules file not found: {path}",
            hint="Create it, or point to it with --rules or FWM_RULES_FILE",
        )

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in rules file: {path}",
            details=[str(e)],
        ) from e
    except PermissionError:
        raise ConfigurationError(
            f"Cannot read rules file: {path}",
            hint="Check file permissions or run with sudo",
        )

    return rules_from_data(data, default_table=default_table, source=str(path))


def rules_from_data(data, *, default_table: str = "filter", source: str = "rules") -> list[Rule]:
    """Build rules from the parsed YAML document."""
    if not isinstance(data, dict) or not isinstance(data.get("rules", []), list):
        raise ConfigurationError(
            f"Expected a 'rules' list in {source}",
            hint="See 'fwm parse --yaml' output for the format",
        )

    rules = []
    seen: set[tuple] = set()
    for index, entry in enumerate(data.get("rules", []), start=1):
        if not isinstance(entry, dict):
            raise ValidationError(f"Rule #{index} in {source} is not a mapping")

        rule = Rule.from_dict(entry, default_table=default_table)
        if rule.key in seen:
            raise ValidationError(
                f"Duplicate rule name in {rule.table}/{rule.chain}: {rule.name}",
                hint="Names order the rules in a chain and must be unique",
            )
        seen.add(rule.key)
        rules.append(rule)

    return rules


def dump_rules(rules: list[Rule], *, include_line: bool = False) -> str:
    """Render rules in the rules file format."""
    data = {"rules": [rule.to_dict(include_line=include_line) for rule in rules]}
    return yaml.dump(data, default_flow_style=False, sort_keys=False)
