"""Rule ordering.

Rule names double as sort keys: within a chain, rules are kept in
codepoint order of their names, so a rule's position follows from the
names of the rules already there.
"""

from typing import Iterable

from fwm.services.rule import Rule


def insert_position(
    name: str,
    chain: str,
    table: str,
    observed: Iterable[Rule],
) -> int:
    """1-based position at which the rule called ``name`` belongs.

    Args:
        name: Name of the rule being placed
        chain: Chain the rule goes into
        table: Table of the chain
        observed: Rules currently present (any chain or table)

    Returns:
        Position for ``iptables -I``/``-R``
    """
    names = [rule.name for rule in observed if rule.chain == chain and rule.table == table]

    # Duplicates keep their own slots; a repeated name ranks at its first copy
    names.append(name)
    return sorted(names).index(name) + 1
