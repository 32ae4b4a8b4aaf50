"""iptables-save dump parser.

Turns each ``-A CHAIN ...`` line of an iptables-save dump into a Rule.
Flags are resolved through the attribute table; flags it does not model
are skipped so that rules using other extensions still parse.
"""

import re
from typing import Optional

from rich.markup import escape

from fwm.core.output import console
from fwm.services.attributes import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_PROTO,
    LOG_TARGET,
    TERMINAL_TARGETS,
    AttributeDescriptor,
    AttributeTable,
    ValueKind,
)
from fwm.services.rule import (
    ENSURE_PRESENT,
    Rule,
    normalize_address,
    normalize_ports,
    normalize_state,
    synthetic_name,
)


PROVIDER_NAME = "iptables"

# Comments, chain declarations and commit/error markers
SKIP_LINE = re.compile(r"^(#|:\S+|COMMIT|FATAL)")
TABLE_MARKER = "*"

APPEND_MARKER = "-A"
MODULE_MARKER = "-m"
NEGATION = "!"

QUOTE = '"'

# Attributes whose value may be a quoted, space-containing string
_QUOTED_ATTRIBUTES = ("name", "log_prefix")


def parse_dump(text: str, attributes: AttributeTable) -> list[Rule]:
    """Parse a complete iptables-save dump.

    The current table is carried from each ``*table`` line to the rule
    lines that follow it.

    Args:
        text: iptables-save output
        attributes: Attribute table for the running iptables

    Returns:
        Rules in dump order
    """
    rules = []
    table: Optional[str] = None
    sequence = 1

    for line in text.splitlines():
        if line.startswith(TABLE_MARKER):
            table = line[len(TABLE_MARKER):].strip()
            continue

        rule = parse_rule(line, table, sequence, attributes)
        if rule is not None:
            rules.append(rule)
            sequence += 1

    return rules


def parse_rule(
    line: str,
    table: Optional[str],
    sequence: int,
    attributes: AttributeTable,
) -> Optional[Rule]:
    """Parse one dump line.

    Args:
        line: Raw dump line
        table: Table the line belongs to
        sequence: Position of the rule among all rules parsed so far
        attributes: Attribute table

    Returns:
        Rule, or None for lines that are not rules
    """
    if not line.strip() or SKIP_LINE.match(line) or line.startswith(TABLE_MARKER):
        return None

    tokens = line.split()
    values: dict[str, str] = {}
    modules: list[str] = []
    invert: dict[str, bool] = {}
    chain: Optional[str] = None
    negate_next = False

    i = 0
    while i < len(tokens):
        token = tokens[i]

        if token == APPEND_MARKER:
            chain = _token_at(tokens, i + 1)
            i += 2
            continue

        if token == MODULE_MARKER:
            module = _token_at(tokens, i + 1)
            if module is not None:
                modules.append(module)
            i += 2
            continue

        if token == NEGATION:
            negate_next = True
            i += 1
            continue

        descriptor = attributes.resolve_flag(token)
        if descriptor is None:
            # A negation only applies to the flag right after it
            negate_next = False
            i += 1
            continue

        value, i = _read_value(descriptor, tokens, i + 1)
        if value is None:
            console.debug(f"Flag {token} has no value: {escape(line)}")
            continue

        values[descriptor.name] = value
        if negate_next:
            invert[descriptor.name] = True
            negate_next = False

    if chain is None:
        console.debug(f"Skipping line without {APPEND_MARKER}: {escape(line)}")
        return None

    return _build_rule(line, table, sequence, chain, values, modules, invert)


def _token_at(tokens: list[str], index: int) -> Optional[str]:
    return tokens[index] if index < len(tokens) else None


def _read_value(
    descriptor: AttributeDescriptor,
    tokens: list[str],
    start: int,
) -> tuple[Optional[str], int]:
    """Read the value following a flag; returns (value, next index)."""
    if start >= len(tokens):
        return None, start

    if descriptor.name in _QUOTED_ATTRIBUTES:
        return _read_quoted(tokens, start)

    if descriptor.kind is ValueKind.PAIRED:
        pair = tokens[start:start + 2]
        return " ".join(pair), start + len(pair)

    return tokens[start], start + 1


def _read_quoted(tokens: list[str], start: int) -> tuple[str, int]:
    """Rejoin a quoted value that whitespace splitting broke apart.

    ``--comment "010 allow ssh"`` arrives as three tokens. An unterminated
    quote consumes the rest of the line.
    """
    first = tokens[start]
    end = start
    if first.startswith(QUOTE) and not (len(first) > 1 and first.endswith(QUOTE)):
        end = start + 1
        while end < len(tokens) and not tokens[end].endswith(QUOTE):
            end += 1
        end = min(end, len(tokens) - 1)

    value = " ".join(tokens[start:end + 1]).replace(QUOTE, "")
    return value, end + 1


def _build_rule(
    line: str,
    table: Optional[str],
    sequence: int,
    chain: str,
    values: dict[str, str],
    modules: list[str],
    invert: dict[str, bool],
) -> Rule:
    data: dict = dict(values)

    for prop in ("source", "destination"):
        if prop in data:
            normalized = normalize_address(data[prop])
            if normalized is None:
                console.debug(f"Keeping non-address {prop} as is: {escape(data[prop])}")
            else:
                data[prop] = normalized

    for prop in ("dport", "sport", "port", "state"):
        if prop in data:
            data[prop] = data[prop].split(",")

    for prop in ("dport", "sport", "port"):
        if prop in data:
            data[prop] = normalize_ports(data[prop])

    if "state" in data:
        data["state"] = normalize_state(data["state"])

    # An empty comment names nothing
    if not data.get("name"):
        data["name"] = synthetic_name(line)

    # iptables-save leaves out the default log level
    if data.get("jump") == LOG_TARGET and "log_level" not in data:
        data["log_level"] = DEFAULT_LOG_LEVEL

    data["line"] = line
    data["provider"] = PROVIDER_NAME
    data["table"] = table
    data["ensure"] = ENSURE_PRESENT

    data.setdefault("proto", DEFAULT_PROTO)

    if data.get("jump") in TERMINAL_TARGETS:
        data["action"] = data.pop("jump").lower()

    return Rule(
        chain=chain,
        modules=modules,
        invert=invert,
        sequence=sequence,
        **data,
    )
