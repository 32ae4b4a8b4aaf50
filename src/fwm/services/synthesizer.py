"""Argument synthesis: Rule -> iptables command tokens.

The tokens produced here are the argument list for ``iptables -I`` and
``iptables -R``. Encoding is the inverse of the dump parser: port ranges go
back to ':' and lists back to comma-joined values.
"""

from rich.markup import escape

from fwm.core.output import console
from fwm.services.attributes import AttributeDescriptor, AttributeTable, ValueKind
from fwm.services.rule import Rule


INSERT_OPERATION = "-I"
REPLACE_OPERATION = "-R"
NEGATION = "!"


def general_args(rule: Rule, attributes: AttributeTable) -> list[str]:
    """Match and target arguments for a rule.

    Attributes are emitted in attribute table order. A flag's module is
    loaded once, right before the first flag needing it. Protocol and jump
    go to the front because iptables must see them before the match
    modules they load; a jump already at the front also satisfies a
    ``-j TARGET`` module requirement.

    Args:
        rule: Desired rule
        attributes: Attribute table

    Returns:
        Argument tokens
    """
    front: list[str] = []
    args: list[str] = []
    emitted: set[str] = set()

    for descriptor in attributes:
        value = getattr(rule, descriptor.name, None)
        if not value and descriptor.name == "jump" and rule.action:
            value = rule.action.upper()
        if not value:
            continue

        if descriptor.module:
            module_key = " ".join(descriptor.module)
            if module_key not in emitted:
                console.debug(f"Adding module: {module_key}")
                args.extend(descriptor.module)
                emitted.add(module_key)

        negation = [NEGATION] if rule.invert.get(descriptor.name) else []

        if descriptor.is_front_flag:
            front_key = f"{descriptor.flag} {value}"
            if front_key in emitted:
                console.debug(f"Not moving {escape(front_key)} to the front twice")
            else:
                front = negation + [descriptor.flag, value] + front
                emitted.add(front_key)
            continue

        args.extend(negation)
        args.append(descriptor.flag)
        args.extend(encode_value(descriptor, value))

    return front + args


def encode_value(descriptor: AttributeDescriptor, value) -> list[str]:
    """Encode an attribute value as it appears on the iptables command line."""
    if descriptor.kind is ValueKind.PORTS:
        return [",".join(port.replace("-", ":") for port in value)]
    if descriptor.kind is ValueKind.PAIRED:
        return value.split()
    if isinstance(value, list):
        return [",".join(value)]
    return [value]


def insert_args(rule: Rule, position: int, attributes: AttributeTable) -> list[str]:
    """Arguments inserting ``rule`` at ``position`` in its chain."""
    return [INSERT_OPERATION, rule.chain, str(position)] + general_args(rule, attributes)


def update_args(rule: Rule, position: int, attributes: AttributeTable) -> list[str]:
    """Arguments replacing the rule at ``position`` with ``rule``."""
    return [REPLACE_OPERATION, rule.chain, str(position)] + general_args(rule, attributes)
