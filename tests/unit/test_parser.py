"""Unit tests for the iptables-save dump parser."""

import pytest

from fwm.core.output import Verbosity, console
from fwm.services.attributes import build_attribute_table
from fwm.services.parser import parse_dump, parse_rule
from fwm.services.rule import synthetic_name


SAMPLE_DUMP = """# Generated by iptables-save v1.8.7 on Tue Mar  5 10:00:00 2024
*filter
:INPUT DROP [0:0]
:FORWARD DROP [0:0]
:OUTPUT ACCEPT [0:0]
-A INPUT -i lo -m comment --comment "010 allow loopback" -j ACCEPT
-A INPUT -m state --state RELATED,ESTABLISHED -m comment --comment "020 allow established" -j ACCEPT
-A INPUT -p tcp -m multiport --dports 22 -m comment --comment "100 allow ssh" -j ACCEPT
-A INPUT -j DROP
COMMIT
# Completed on Tue Mar  5 10:00:00 2024
*nat
:PREROUTING ACCEPT [0:0]
-A PREROUTING -p tcp -m tcp --dport 80 -m comment --comment "200 redirect http" -j REDIRECT --to-ports 8080
COMMIT
"""


@pytest.fixture
def attributes():
    """Attribute table for a modern iptables."""
    return build_attribute_table("1.8.7")


@pytest.fixture
def debug_console():
    """Global console at debug verbosity for the duration of a test."""
    console.configure(verbosity=Verbosity.DEBUG)
    yield console
    console.configure()


class TestParseRule:
    """Tests for parse_rule."""

    def test_basic_rule(self, attributes):
        """A commented ACCEPT rule should parse fully."""
        line = '-A INPUT -p tcp -m multiport --dports 22,1000:2000 -m comment --comment "100 allow ssh" -j ACCEPT'
        rule = parse_rule(line, "filter", 1, attributes)

        assert rule.name == "100 allow ssh"
        assert rule.chain == "INPUT"
        assert rule.table == "filter"
        assert rule.proto == "tcp"
        assert rule.dport == ["22", "1000-2000"]
        assert rule.action == "accept"
        assert rule.jump is None
        assert rule.modules == ["multiport", "comment"]
        assert rule.line == line
        assert rule.provider == "iptables"
        assert rule.ensure == "present"
        assert rule.sequence == 1

    def test_skipped_lines(self, attributes):
        """Comments, chain declarations and markers should be skipped."""
        for line in ("# Generated", ":INPUT ACCEPT [0:0]", "COMMIT", "FATAL: error", "*filter", ""):
            assert parse_rule(line, "filter", 1, attributes) is None

    def test_line_without_append(self, attributes):
        """Lines without -A should not produce a rule."""
        assert parse_rule("-I INPUT -j ACCEPT", "filter", 1, attributes) is None

    def test_unnamed_rule(self, attributes):
        """Rules without a comment should get a synthetic name."""
        line = "-A INPUT -j DROP"
        rule = parse_rule(line, "filter", 4, attributes)
        assert rule.name == synthetic_name(line)
        assert rule.is_unnamed
        assert rule.action == "drop"

    def test_default_proto(self, attributes):
        """Rules without -p should have proto 'all'."""
        rule = parse_rule("-A INPUT -j DROP", "filter", 1, attributes)
        assert rule.proto == "all"

    def test_log_level_default(self, attributes):
        """LOG rules without --log-level should get level 4."""
        line = '-A INPUT -m comment --comment "900 log" -j LOG --log-prefix "drop: "'
        rule = parse_rule(line, "filter", 1, attributes)
        assert rule.jump == "LOG"
        assert rule.log_level == "4"
        assert rule.log_prefix == "drop: "
        assert rule.action is None

    def test_log_level_kept(self, attributes):
        """An explicit log level should be kept."""
        rule = parse_rule("-A INPUT -j LOG --log-level 6", "filter", 1, attributes)
        assert rule.log_level == "6"

    def test_non_terminal_jump_kept(self, attributes):
        """Jumps to other targets should stay in jump."""
        rule = parse_rule("-A INPUT -j LOGDROP", "filter", 1, attributes)
        assert rule.jump == "LOGDROP"
        assert rule.action is None

    def test_address_normalized(self, attributes):
        """Addresses should be normalized to CIDR form."""
        rule = parse_rule("-A INPUT -s 10.1.2.3/32 -d 192.168.1.7/24 -j ACCEPT", "filter", 1, attributes)
        assert rule.source == "10.1.2.3/32"
        assert rule.destination == "192.168.1.0/24"

    def test_non_address_kept(self, attributes):
        """Values that are not addresses should be kept as they are."""
        rule = parse_rule("-A INPUT -s example.com -j ACCEPT", "filter", 1, attributes)
        assert rule.source == "example.com"

    def test_negation(self, attributes):
        """'!' should mark the following attribute as inverted."""
        rule = parse_rule("-A INPUT ! -s 10.0.0.0/8 -p tcp -j DROP", "filter", 1, attributes)
        assert rule.source == "10.0.0.0/8"
        assert rule.invert == {"source": True}

    def test_negation_cleared_by_unmodelled_flag(self, attributes):
        """'!' before a flag outside the table should not carry over."""
        line = "-A INPUT -m conntrack ! --ctstate NEW -s 10.0.0.0/8 -j ACCEPT"
        rule = parse_rule(line, "filter", 1, attributes)
        assert rule.source == "10.0.0.0/8"
        assert rule.invert == {}

    def test_negated_ports(self, attributes):
        """'!' should apply to module flags too."""
        line = "-A INPUT -p tcp -m multiport ! --dports 80,443 -j REJECT --reject-with tcp-reset"
        rule = parse_rule(line, "filter", 1, attributes)
        assert rule.dport == ["80", "443"]
        assert rule.invert == {"dport": True}

    def test_empty_comment(self, attributes):
        """An empty comment should fall back to a synthetic name."""
        line = '-A INPUT -m comment --comment "" -j ACCEPT'
        rule = parse_rule(line, "filter", 1, attributes)
        assert rule.name == synthetic_name(line)
        assert rule.is_unnamed

    def test_markup_in_debug_output(self, attributes, debug_console, capsys):
        """Comments that look like Rich markup should print literally."""
        line = '-A INPUT -m comment --comment "[/x] odd" -s'
        rule = parse_rule(line, "filter", 1, attributes)
        assert rule.name == "[/x] odd"
        assert "[/x] odd" in capsys.readouterr().out

    def test_state_normalized(self, attributes):
        """States should be split and sorted."""
        rule = parse_rule("-A INPUT -m state --state RELATED,ESTABLISHED -j ACCEPT", "filter", 1, attributes)
        assert rule.state == ["ESTABLISHED", "RELATED"]

    def test_alias_flags(self, attributes):
        """Single-port flags should fill the multiport attributes."""
        rule = parse_rule("-A INPUT -p tcp -m tcp --dport 80 --sport 1024:65535 -j ACCEPT", "filter", 1, attributes)
        assert rule.dport == ["80"]
        assert rule.sport == ["1024-65535"]

    def test_tcp_flags_two_tokens(self, attributes):
        """--tcp-flags should take its mask and its comparison."""
        line = "-A INPUT -p tcp -m tcp --tcp-flags FIN,SYN,RST,ACK SYN -j DROP"
        rule = parse_rule(line, "filter", 1, attributes)
        assert rule.tcp_flags == "FIN,SYN,RST,ACK SYN"
        assert rule.action == "drop"

    def test_unmodelled_flags_skipped(self, attributes):
        """Flags outside the table should not break parsing."""
        line = '-A INPUT -p tcp -m conntrack --ctstate NEW -m comment --comment "100 new" -j ACCEPT'
        rule = parse_rule(line, "filter", 1, attributes)
        assert rule.name == "100 new"
        assert rule.state is None
        assert "conntrack" in rule.modules

    def test_comment_with_flag_like_words(self, attributes):
        """Quoted text should never be read as flags."""
        line = '-A INPUT -m comment --comment "100 drop -j ACCEPT" -j DROP'
        rule = parse_rule(line, "filter", 1, attributes)
        assert rule.name == "100 drop -j ACCEPT"
        assert rule.action == "drop"

    def test_single_word_comment(self, attributes):
        """A quoted single word should lose its quotes."""
        rule = parse_rule('-A INPUT -m comment --comment "ssh" -j ACCEPT', "filter", 1, attributes)
        assert rule.name == "ssh"

    def test_unquoted_comment(self, attributes):
        """Unquoted comments should be read as one token."""
        rule = parse_rule("-A INPUT -m comment --comment ssh -j ACCEPT", "filter", 1, attributes)
        assert rule.name == "ssh"

    def test_unterminated_quote(self, attributes):
        """An unterminated quote should run to the end of the line."""
        rule = parse_rule('-A INPUT -j ACCEPT -m comment --comment "100 broken rule', "filter", 1, attributes)
        assert rule.name == "100 broken rule"

    def test_set_xmark(self, attributes):
        """CONNMARK marks should use --set-xmark on modern iptables."""
        line = "-A PREROUTING -j CONNMARK --set-xmark 0x1/0xffffffff"
        rule = parse_rule(line, "mangle", 1, attributes)
        assert rule.jump == "CONNMARK"
        assert rule.set_mark == "0x1/0xffffffff"

    def test_set_mark_old_iptables(self):
        """CONNMARK marks should use --set-mark on old iptables."""
        old = build_attribute_table("1.4.0")
        rule = parse_rule("-A PREROUTING -j CONNMARK --set-mark 0x1", "mangle", 1, old)
        assert rule.set_mark == "0x1"

    def test_nat_targets(self, attributes):
        """NAT target options should be captured."""
        rule = parse_rule("-A POSTROUTING -o eth0 -j SNAT --to-source 203.0.113.5", "nat", 1, attributes)
        assert rule.outiface == "eth0"
        assert rule.jump == "SNAT"
        assert rule.tosource == "203.0.113.5"

    def test_parse_is_deterministic(self, attributes):
        """Parsing the same line twice should give equal rules."""
        line = "-A INPUT -p udp -m multiport --dports 53 -j ACCEPT"
        assert parse_rule(line, "filter", 1, attributes) == parse_rule(line, "filter", 1, attributes)


class TestParseDump:
    """Tests for parse_dump."""

    def test_rules_and_tables(self, attributes):
        """Every rule line should parse with the table it follows."""
        rules = parse_dump(SAMPLE_DUMP, attributes)

        assert [r.name for r in rules[:3]] == [
            "010 allow loopback",
            "020 allow established",
            "100 allow ssh",
        ]
        assert rules[3].is_unnamed
        assert [r.table for r in rules] == ["filter", "filter", "filter", "filter", "nat"]

    def test_sequence(self, attributes):
        """Sequence should count rules across tables."""
        rules = parse_dump(SAMPLE_DUMP, attributes)
        assert [r.sequence for r in rules] == [1, 2, 3, 4, 5]

    def test_nat_rule(self, attributes):
        """Rules in later tables should parse too."""
        rule = parse_dump(SAMPLE_DUMP, attributes)[-1]
        assert rule.chain == "PREROUTING"
        assert rule.dport == ["80"]
        assert rule.jump == "REDIRECT"
        assert rule.toports == "8080"

    def test_empty_dump(self, attributes):
        """An empty dump should give no rules."""
        assert parse_dump("", attributes) == []
