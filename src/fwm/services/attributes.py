"""Rule attribute table.

Maps each rule attribute to the iptables flag that carries it, the match
or target module that flag needs, and the kind of value it holds. The
table is built once per process and shared read-only by the parser and
the synthesizer.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

from fwm.core.exceptions import ConfigurationError


# iptables switched CONNMARK from --set-mark to --set-xmark in 1.4.1
XMARK_MIN_VERSION = (1, 4, 1)

# Jump targets stored as the higher-level action attribute
TERMINAL_TARGETS = ("ACCEPT", "REJECT", "DROP")

LOG_TARGET = "LOG"
DEFAULT_LOG_LEVEL = "4"
DEFAULT_PROTO = "all"


class ValueKind(str, Enum):
    """How an attribute's value is stored and encoded."""
    SCALAR = "scalar"
    LIST = "list"      # comma-joined in the dump
    PORTS = "ports"    # comma-joined, ':' ranges in the dump, '-' internally
    PAIRED = "paired"  # two separate tokens, stored space-joined


@dataclass(frozen=True)
class AttributeDescriptor:
    """One modelled rule attribute."""
    name: str
    flag: str
    module: Optional[tuple[str, ...]] = None
    kind: ValueKind = ValueKind.SCALAR

    @property
    def is_front_flag(self) -> bool:
        """Protocol and jump must precede the match modules they may load."""
        return self.flag in ("-p", "-j")


def _descriptors(mark_flag: str) -> tuple[AttributeDescriptor, ...]:
    limit = ("-m", "limit")
    multiport = ("-m", "multiport")
    owner = ("-m", "owner")
    log = ("-j", "LOG")

    return (
        AttributeDescriptor("burst", "--limit-burst", limit),
        AttributeDescriptor("destination", "-d"),
        AttributeDescriptor("dport", "--dports", multiport, ValueKind.PORTS),
        AttributeDescriptor("gid", "--gid-owner", owner),
        AttributeDescriptor("icmp", "--icmp-type", ("-m", "icmp")),
        AttributeDescriptor("iniface", "-i"),
        AttributeDescriptor("jump", "-j"),
        AttributeDescriptor("limit", "--limit", limit),
        AttributeDescriptor("log_level", "--log-level", log),
        AttributeDescriptor("log_prefix", "--log-prefix", log),
        AttributeDescriptor("name", "--comment", ("-m", "comment")),
        AttributeDescriptor("outiface", "-o"),
        AttributeDescriptor("port", "--ports", multiport, ValueKind.PORTS),
        AttributeDescriptor("proto", "-p"),
        AttributeDescriptor("reject", "--reject-with", ("-j", "REJECT")),
        AttributeDescriptor("set_mark", mark_flag, ("-j", "CONNMARK")),
        AttributeDescriptor("source", "-s"),
        AttributeDescriptor("sport", "--sports", multiport, ValueKind.PORTS),
        AttributeDescriptor("state", "--state", ("-m", "state"), ValueKind.LIST),
        AttributeDescriptor("table", "-t"),
        AttributeDescriptor("tcp_flags", "--tcp-flags", ("-m", "tcp"), ValueKind.PAIRED),
        AttributeDescriptor("todest", "--to-destination", ("-j", "DNAT")),
        AttributeDescriptor("toports", "--to-ports"),
        AttributeDescriptor("tosource", "--to-source", ("-j", "SNAT")),
        AttributeDescriptor("uid", "--uid-owner", owner),
        AttributeDescriptor("pkttype", "--pkt-type", ("-m", "pkttype")),
    )


# Alternate spellings accepted when parsing
FLAG_ALIASES: Mapping[str, str] = MappingProxyType({
    "--port": "port",
    "-s": "source",
    "--sport": "sport",
    "-d": "destination",
    "--dport": "dport",
    "--to-port": "toports",
})


class AttributeTable:
    """Immutable lookup of rule attributes by name and by flag.

    Args:
        descriptors: Attributes in synthesis order
        aliases: Extra flag spellings mapped to attribute names

    Raises:
        ConfigurationError: If flags are not unique or an alias names an
            unknown attribute
    """

    def __init__(
        self,
        descriptors: tuple[AttributeDescriptor, ...],
        aliases: Mapping[str, str] = FLAG_ALIASES,
    ) -> None:
        by_name: dict[str, AttributeDescriptor] = {}
        by_flag: dict[str, AttributeDescriptor] = {}

        for descriptor in descriptors:
            if descriptor.name in by_name:
                raise ConfigurationError(f"Duplicate rule attribute: {descriptor.name}")
            if descriptor.flag in by_flag:
                raise ConfigurationError(
                    f"Flag {descriptor.flag} used by both "
                    f"{by_flag[descriptor.flag].name} and {descriptor.name}"
                )
            by_name[descriptor.name] = descriptor
            by_flag[descriptor.flag] = descriptor

        for flag, name in aliases.items():
            if name not in by_name:
                raise ConfigurationError(
                    f"Alias {flag} refers to unknown attribute: {name}"
                )
            by_flag.setdefault(flag, by_name[name])

        self._descriptors = tuple(descriptors)
        self._by_name = MappingProxyType(by_name)
        self._by_flag = MappingProxyType(by_flag)

    def __iter__(self) -> Iterator[AttributeDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> AttributeDescriptor:
        """Look up a descriptor by attribute name."""
        return self._by_name[name]

    def resolve_flag(self, flag: str) -> Optional[AttributeDescriptor]:
        """Find the attribute a dump flag sets, or None for unmodelled flags."""
        return self._by_flag.get(flag)

    @property
    def names(self) -> tuple[str, ...]:
        """Attribute names in synthesis order."""
        return tuple(d.name for d in self._descriptors)

    @property
    def mark_flag(self) -> str:
        """The CONNMARK flag this table was built for."""
        return self._by_name["set_mark"].flag


def parse_version(version: str) -> tuple[int, ...]:
    """Turn '1.8.7' (or 'v1.8.7') into (1, 8, 7); unknown parts count as 0."""
    parts = []
    for piece in version.lstrip("v").split("."):
        digits = ""
        for char in piece:
            if not char.isdigit():
                break
            digits += char
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def build_attribute_table(iptables_version: Optional[str] = None) -> AttributeTable:
    """Build the attribute table for the running iptables.

    Args:
        iptables_version: Version string such as '1.8.7'; None assumes a
            modern iptables

    Returns:
        AttributeTable
    """
    mark_flag = "--set-xmark"
    if iptables_version and parse_version(iptables_version) < XMARK_MIN_VERSION:
        mark_flag = "--set-mark"
    return AttributeTable(_descriptors(mark_flag))
