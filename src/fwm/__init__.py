"""
Firewall Manager - declarative iptables rule reconciliation.

Reads the live rule set from iptables-save, compares it with a YAML
rule file and inserts, replaces or deletes rules until they match.
"""

__version__ = "1.0.0"
__author__ = "Firewall Manager Team"
