"""Structured firewall rule.

A Rule is the value exchanged between the dump parser, the YAML desired
state and the argument synthesizer. Both sides normalise values the same
way so that an observed rule and a desired rule compare equal when iptables
would treat them the same.
"""

import hashlib
import ipaddress
import re
from dataclasses import dataclass, field, fields
from typing import Any, Optional, Union

from fwm.core.exceptions import ValidationError
from fwm.services.attributes import DEFAULT_PROTO, TERMINAL_TARGETS


# Unnamed rules sort after every "NNN name" rule using 3-digit prefixes
UNNAMED_PREFIX = "9999"

ACTIONS = tuple(target.lower() for target in TERMINAL_TARGETS)

ENSURE_PRESENT = "present"
ENSURE_ABSENT = "absent"

# Rule fields that are never set from a rules file
_OBSERVED_ONLY = frozenset({"line", "provider", "sequence", "modules"})

# iptables stores comments of at most 256 bytes
MAX_NAME_LENGTH = 256

# A quote would split the comment differently on deletion
INVALID_NAME_CHARS = re.compile(r'["\x00-\x1f\x7f]')

# Match attributes that may be preceded by "!"
NEGATABLE_ATTRIBUTES = (
    "destination", "dport", "gid", "icmp", "iniface", "outiface", "pkttype",
    "port", "proto", "source", "sport", "state", "tcp_flags", "uid",
)

# Attributes holding ports and port ranges
_PORT_FIELDS = ("dport", "sport", "port")


@dataclass(frozen=True)
class Rule:
    """One iptables rule.

    ``name`` doubles as the comment written into iptables and as the sort
    key that decides where in the chain the rule is inserted.
    """

    name: str
    chain: str = "INPUT"
    table: str = "filter"

    # Match attributes
    burst: Optional[str] = None
    destination: Optional[str] = None
    dport: Optional[list[str]] = None
    gid: Optional[str] = None
    icmp: Optional[str] = None
    iniface: Optional[str] = None
    limit: Optional[str] = None
    outiface: Optional[str] = None
    pkttype: Optional[str] = None
    port: Optional[list[str]] = None
    proto: Optional[str] = None
    source: Optional[str] = None
    sport: Optional[list[str]] = None
    state: Optional[list[str]] = None
    tcp_flags: Optional[str] = None
    uid: Optional[str] = None

    # Targets
    action: Optional[str] = None
    jump: Optional[str] = None
    log_level: Optional[str] = None
    log_prefix: Optional[str] = None
    reject: Optional[str] = None
    set_mark: Optional[str] = None
    todest: Optional[str] = None
    toports: Optional[str] = None
    tosource: Optional[str] = None

    # Observed state
    modules: list[str] = field(default_factory=list)
    invert: dict[str, bool] = field(default_factory=dict)
    line: Optional[str] = None
    provider: Optional[str] = None
    ensure: str = ENSURE_PRESENT
    sequence: Optional[int] = None

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity of the rule within the whole rule set."""
        return (self.table, self.chain, self.name)

    @property
    def is_unnamed(self) -> bool:
        """True for rules that carried no comment in the dump."""
        return self.name.startswith(f"{UNNAMED_PREFIX} ")

    @property
    def target(self) -> Optional[str]:
        """The jump target as iptables spells it."""
        if self.jump:
            return self.jump
        if self.action:
            return self.action.upper()
        return None

    def changed_attributes(self, observed: "Rule") -> list[str]:
        """Attributes this (desired) rule declares that differ on ``observed``.

        Attributes left unset on the desired rule are not managed and
        never count as a difference.
        """
        changed = []
        declared = set()
        for name in MANAGED_ATTRIBUTES:
            wanted = getattr(self, name)
            if wanted is None:
                continue
            declared.add(name)
            if wanted != getattr(observed, name):
                changed.append(name)

        # Negation of a declared attribute reverses its meaning
        observed_invert = {name for name in observed.invert if name in declared}
        if set(self.invert) != observed_invert:
            changed.append("invert")
        return changed

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, default_table: str = "filter") -> "Rule":
        """Build a desired rule from a rules file entry.

        Values are normalised the way the dump parser normalises them.

        Raises:
            ValidationError: If the entry is not a valid rule
        """
        unknown = sorted(set(data) - RULE_FILE_KEYS)
        if unknown:
            raise ValidationError(
                f"Unknown rule attribute(s): {', '.join(unknown)}",
                hint=f"Valid attributes: {', '.join(sorted(RULE_FILE_KEYS))}",
            )

        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError(
                "Rule has no name",
                hint="Every rule needs a name such as '100 allow ssh'",
            )
        if INVALID_NAME_CHARS.search(name):
            raise ValidationError(
                f"Rule name contains a quote or control character: {name!r}",
                hint="The name is stored as an iptables comment",
            )
        if len(name.encode()) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"Rule name is longer than {MAX_NAME_LENGTH} bytes: {name[:40]}...",
                hint="The name is stored as an iptables comment",
            )

        values: dict[str, Any] = {}
        for key, value in data.items():
            if value is None or key == "invert":
                continue
            if key in _PORT_FIELDS:
                values[key] = normalize_ports(_as_list(value))
            elif key == "state":
                values[key] = normalize_state(_as_list(value))
            elif key in ("source", "destination"):
                values[key] = _validated_address(name, key, str(value))
            else:
                values[key] = str(value)

        values["name"] = name
        values.setdefault("table", default_table)
        values["invert"] = _validated_invert(name, data.get("invert"), values)

        action = values.get("action")
        if action is not None:
            action = action.lower()
            if action not in ACTIONS:
                raise ValidationError(
                    f"Invalid action for rule '{name}': {action}",
                    hint=f"Valid actions: {', '.join(ACTIONS)}",
                )
            values["action"] = action

        jump = values.get("jump")
        if jump is not None:
            if action is not None:
                raise ValidationError(
                    f"Rule '{name}' sets both action and jump",
                    hint="Use action for accept/reject/drop and jump for other targets",
                )
            if jump.upper() in TERMINAL_TARGETS:
                raise ValidationError(
                    f"Rule '{name}' jumps to {jump}",
                    hint=f"Use 'action: {jump.lower()}' instead",
                )

        ensure = values.get("ensure", ENSURE_PRESENT)
        if ensure not in (ENSURE_PRESENT, ENSURE_ABSENT):
            raise ValidationError(
                f"Invalid ensure for rule '{name}': {ensure}",
                hint="Use 'present' or 'absent'",
            )

        return cls(**values)

    def to_dict(self, *, include_line: bool = False) -> dict[str, Any]:
        """Convert to a rules file entry (None values are left out)."""
        d: dict[str, Any] = {
            "name": self.name,
            "chain": self.chain,
            "table": self.table,
        }
        for name in MANAGED_ATTRIBUTES:
            value = getattr(self, name)
            if value is None or name in ("chain", "table"):
                continue
            d[name] = list(value) if isinstance(value, list) else value
        if self.invert:
            d["invert"] = sorted(self.invert)
        if self.ensure != ENSURE_PRESENT:
            d["ensure"] = self.ensure
        if include_line and self.line:
            d["line"] = self.line
        return d

    def __str__(self) -> str:
        """Human-readable representation."""
        parts = [self.name, f"[{self.table}/{self.chain}]"]
        if self.proto and self.proto != DEFAULT_PROTO:
            parts.append(self.proto)
        if self.dport:
            parts.append(f"dport {','.join(self.dport)}")
        if self.source:
            parts.append(f"from {self.source}")
        if self.target:
            parts.append(f"-> {self.target}")
        return " ".join(parts)


RULE_FILE_KEYS = frozenset(f.name for f in fields(Rule)) - _OBSERVED_ONLY

# Attributes compared between desired and observed rules
MANAGED_ATTRIBUTES = tuple(
    f.name for f in fields(Rule)
    if f.name not in _OBSERVED_ONLY and f.name not in ("name", "ensure", "invert")
)


def _as_list(value: Union[str, int, list, tuple]) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [v.strip() for v in str(value).split(",") if v.strip()]


def _validated_invert(name: str, value: Any, values: dict[str, Any]) -> dict[str, bool]:
    """Negated attributes, given as a list of names or a name -> bool mapping."""
    if value is None:
        return {}
    if isinstance(value, dict):
        negated = [str(key) for key, enabled in value.items() if enabled]
    else:
        negated = _as_list(value)

    for attribute in negated:
        if attribute not in NEGATABLE_ATTRIBUTES:
            raise ValidationError(
                f"Rule '{name}' cannot negate {attribute}",
                hint=f"Negatable attributes: {', '.join(NEGATABLE_ATTRIBUTES)}",
            )
        if values.get(attribute) is None:
            raise ValidationError(
                f"Rule '{name}' negates {attribute} but does not set it",
            )
    return {attribute: True for attribute in negated}


def _validated_address(name: str, key: str, value: str) -> str:
    normalized = normalize_address(value)
    if normalized is None:
        raise ValidationError(
            f"Invalid {key} for rule '{name}': {value}",
            hint="Use an address or CIDR such as '10.0.0.0/8'",
        )
    return normalized


def normalize_address(value: str) -> Optional[str]:
    """Canonical CIDR form: '10.1.2.3' -> '10.1.2.3/32', host bits masked.

    Returns None when the value is not an address.
    """
    try:
        return str(ipaddress.ip_network(value, strict=False))
    except ValueError:
        return None


def normalize_ports(values: list[str]) -> list[str]:
    """Ports and ranges using '-' as the range delimiter."""
    return [value.replace(":", "-") for value in values]


def normalize_state(values: list[str]) -> list[str]:
    """Connection states, upper-cased and sorted."""
    return sorted(value.upper() for value in values)


def synthetic_name(line: str) -> str:
    """Stable name for a rule that has no comment.

    The same raw line always yields the same name, and the prefix sorts it
    after named rules.
    """
    return f"{UNNAMED_PREFIX} {hashlib.md5(line.encode(), usedforsecurity=False).hexdigest()}"
