"""Deletion command reconstruction.

A rule is deleted by repeating its dump line with ``-D`` in place of
``-A``. The line has to be split into the same arguments iptables was
given when the rule was created, so quoted values that contain spaces
must end up as one argument again.
"""

from fwm.services.parser import APPEND_MARKER, QUOTE


DELETE_OPERATION = "-D"
TABLE_FLAG = "-t"


def delete_args(line: str, table: str) -> list[str]:
    """Arguments deleting the rule whose dump line is ``line``.

    Args:
        line: Raw iptables-save line of the rule
        table: Table the rule lives in

    Returns:
        Argument tokens, starting with ``-t TABLE``
    """
    tokens: list = line.split()
    if tokens and tokens[0] == APPEND_MARKER:
        tokens[0] = DELETE_OPERATION

    i = 0
    while i < len(tokens):
        if QUOTE not in tokens[i]:
            i += 1
            continue

        end = _closing_index(tokens, i)
        tokens[i] = " ".join(tokens[i:end + 1]).replace(QUOTE, "")
        for blank in range(i + 1, end + 1):
            tokens[blank] = None
        i = end + 1

    return [TABLE_FLAG, table] + [token for token in tokens if token is not None]


def _closing_index(tokens: list[str], start: int) -> int:
    """Index of the token closing the quote opened at ``start``."""
    # A token with balanced quotes ("ssh") closes itself
    if tokens[start].count(QUOTE) % 2 == 0:
        return start

    for end in range(start + 1, len(tokens)):
        if QUOTE in tokens[end]:
            return end

    # Unterminated: the quote runs to the end of the line
    return len(tokens) - 1
