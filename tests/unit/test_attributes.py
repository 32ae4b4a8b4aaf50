"""Unit tests for the rule attribute table."""

import pytest

from fwm.services.attributes import (
    FLAG_ALIASES,
    AttributeDescriptor,
    AttributeTable,
    ValueKind,
    build_attribute_table,
    parse_version,
)
from fwm.core.exceptions import ConfigurationError


class TestBuildAttributeTable:
    """Tests for build_attribute_table."""

    def test_attribute_order(self):
        """Attributes should come in synthesis order."""
        table = build_attribute_table("1.8.7")
        assert table.names == (
            "burst", "destination", "dport", "gid", "icmp", "iniface", "jump",
            "limit", "log_level", "log_prefix", "name", "outiface", "port",
            "proto", "reject", "set_mark", "source", "sport", "state", "table",
            "tcp_flags", "todest", "toports", "tosource", "uid", "pkttype",
        )

    def test_modern_version_uses_set_xmark(self):
        """iptables 1.4.1 and later should use --set-xmark."""
        assert build_attribute_table("1.4.1").mark_flag == "--set-xmark"
        assert build_attribute_table("1.8.7").mark_flag == "--set-xmark"

    def test_old_version_uses_set_mark(self):
        """iptables before 1.4.1 should use --set-mark."""
        assert build_attribute_table("1.4.0").mark_flag == "--set-mark"
        assert build_attribute_table("1.3.8").mark_flag == "--set-mark"

    def test_unknown_version_assumes_modern(self):
        """No version should assume a modern iptables."""
        assert build_attribute_table(None).mark_flag == "--set-xmark"

    def test_modules(self):
        """Flags should carry the module they need."""
        table = build_attribute_table()
        assert table.get("dport").module == ("-m", "multiport")
        assert table.get("name").module == ("-m", "comment")
        assert table.get("log_prefix").module == ("-j", "LOG")
        assert table.get("source").module is None

    def test_value_kinds(self):
        """Ports, state and tcp flags should have their own kinds."""
        table = build_attribute_table()
        assert table.get("dport").kind is ValueKind.PORTS
        assert table.get("state").kind is ValueKind.LIST
        assert table.get("tcp_flags").kind is ValueKind.PAIRED
        assert table.get("proto").kind is ValueKind.SCALAR

    def test_front_flags(self):
        """Only protocol and jump should go to the front."""
        table = build_attribute_table()
        front = [d.name for d in table if d.is_front_flag]
        assert front == ["jump", "proto"]


class TestResolveFlag:
    """Tests for AttributeTable.resolve_flag."""

    def test_primary_flag(self):
        """Primary flags should resolve to their attribute."""
        table = build_attribute_table()
        assert table.resolve_flag("--dports").name == "dport"
        assert table.resolve_flag("--comment").name == "name"

    def test_aliases(self):
        """Alternate spellings should resolve to the same attribute."""
        table = build_attribute_table()
        for flag, name in FLAG_ALIASES.items():
            assert table.resolve_flag(flag).name == name

    def test_exact_match_only(self):
        """Flags should never match by substring."""
        table = build_attribute_table()
        assert table.resolve_flag("--set-mark-extra") is None
        assert table.resolve_flag("-m") is None

    def test_old_mark_flag_unknown_on_modern_table(self):
        """--set-mark should not resolve when the table uses --set-xmark."""
        table = build_attribute_table("1.8.7")
        assert table.resolve_flag("--set-mark") is None
        assert table.resolve_flag("--set-xmark").name == "set_mark"


class TestAttributeTableValidation:
    """Tests for AttributeTable consistency checks."""

    def test_duplicate_flag_rejected(self):
        """Two attributes sharing a flag should be rejected."""
        with pytest.raises(ConfigurationError) as exc:
            AttributeTable((
                AttributeDescriptor("source", "-s"),
                AttributeDescriptor("src", "-s"),
            ), aliases={})
        assert "-s" in str(exc.value)

    def test_duplicate_name_rejected(self):
        """Two attributes with one name should be rejected."""
        with pytest.raises(ConfigurationError):
            AttributeTable((
                AttributeDescriptor("source", "-s"),
                AttributeDescriptor("source", "--source"),
            ), aliases={})

    def test_unknown_alias_rejected(self):
        """An alias for a missing attribute should be rejected."""
        with pytest.raises(ConfigurationError):
            AttributeTable((AttributeDescriptor("source", "-s"),), aliases={"--src": "nope"})

    def test_contains_and_len(self):
        """Table should support membership and len."""
        table = build_attribute_table()
        assert "dport" in table
        assert "line" not in table
        assert len(table) == 26


class TestParseVersion:
    """Tests for parse_version."""

    def test_plain(self):
        """Dotted versions should parse to int tuples."""
        assert parse_version("1.8.7") == (1, 8, 7)

    def test_leading_v(self):
        """A leading 'v' should be ignored."""
        assert parse_version("v1.4.21") == (1, 4, 21)

    def test_suffix(self):
        """Non-numeric suffixes should be dropped."""
        assert parse_version("1.4.1rc1") == (1, 4, 1)
