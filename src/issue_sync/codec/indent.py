"""Textual preprocessing applied before structural parsing.

* ``normalize_indentation`` converts space indentation (which editors
  routinely substitute for tabs) back into the canonical tab form.
* ``expand_shorthands`` rewrites one-token trigger lines into the
  canonical marker lines of the active dialect.

Both passes keep a 1:1 line correspondence with the input so parse errors
still point at the user's original line numbers.
"""

from __future__ import annotations

from .markers import (
    SHORTHAND_BLOCKERS,
    SHORTHAND_COMMENT,
    Dialect,
    blockers_header,
    comment_marker,
)

DEFAULT_INDENT_WIDTH = 4
MAX_INDENT_WIDTH = 8


def detect_indent_width(lines: list[str]) -> int | None:
    """Width of one indent level in a space-indented document.

    The shortest run of two or more leading spaces, capped at
    ``MAX_INDENT_WIDTH``.  Read-only content sits one level deeper than
    its marker, so the first indented line can be two levels deep.
    Returns ``None`` when no line is space-indented.
    """
    runs = [
        len(line) - len(line.lstrip(" "))
        for line in lines
        if line.strip()
    ]
    indented = [count for count in runs if count >= 2]
    if not indented:
        return None
    return min(min(indented), MAX_INDENT_WIDTH)


def normalize_indentation(text: str, width: int | None = None) -> str:
    """Convert leading spaces to tabs.

    Each leading run of ``tabs`` followed by ``spaces`` becomes
    ``tabs + spaces // width`` tabs, keeping ``spaces % width`` spaces.
    Whitespace-only lines become empty.  Text without space-indented lines
    is returned unchanged.

    Args:
        text: Document text.
        width: Spaces per level; detected when ``None``.
    """
    lines = text.split("\n")
    if width is None:
        width = detect_indent_width(lines)
        if width is None:
            return text

    out: list[str] = []
    for line in lines:
        if not line.strip():
            out.append("")
            continue
        after_tabs = line.lstrip("\t")
        rest = after_tabs.lstrip(" ")
        tabs = len(line) - len(after_tabs)
        spaces = len(after_tabs) - len(rest)
        levels, remainder = divmod(spaces, width)
        out.append("\t" * (tabs + levels) + " " * remainder + rest)
    return "\n".join(out)


def expand_shorthands(text: str, dialect: Dialect) -> str:
    """Expand ``!b`` and ``!c`` trigger lines.

    ``!b`` becomes the dialect's blockers header and ``!c`` a pending
    comment marker; both keep the trigger's indentation.  Matching is
    case-insensitive and the trigger must be alone on its line.
    """
    out: list[str] = []
    for line in text.split("\n"):
        token = line.strip().lower()
        indent = line[: len(line) - len(line.lstrip())]
        if token == SHORTHAND_BLOCKERS:
            out.append(indent + blockers_header(dialect))
        elif token == SHORTHAND_COMMENT:
            out.append(indent + comment_marker(dialect, None))
        else:
            out.append(line)
    return "\n".join(out)
