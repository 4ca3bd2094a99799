"""Blockers section encoding.

A blockers section is a list of lines under a blockers header.  Inside the
section a line is either a grouping header (``## Phase 1`` / ``== Phase 1``)
or an item; items may carry a ``- `` prefix and are nested by extra tabs.

The remote keeps the section at the end of the issue body, so
``split_blockers`` / ``join_blockers`` move it in and out of body text.
"""

from __future__ import annotations

from ..models import BlockerLine, BlockerSequence
from .markers import Dialect, blockers_header, header_line, is_blockers_header, parse_header


def classify_blocker_line(
    dialect: Dialect, text: str, depth: int
) -> BlockerLine:
    """Build a ``BlockerLine`` from the text of one section line."""
    header = parse_header(dialect, text)
    if header is not None:
        level, title = header
        return BlockerLine(text=title, depth=depth, header_level=level)
    stripped = text.strip()
    if stripped.startswith("- "):
        stripped = stripped[2:].strip()
    elif stripped == "-":
        stripped = ""
    return BlockerLine(text=stripped, depth=depth)


def render_blocker_lines(
    blockers: BlockerSequence, dialect: Dialect, indent: str = ""
) -> list[str]:
    """Render section lines (without the section header)."""
    lines = []
    for line in blockers.lines:
        prefix = indent + "\t" * line.depth
        if line.header_level is not None:
            lines.append(
                prefix + header_line(dialect, line.header_level, line.text)
            )
        else:
            lines.append(prefix + "- " + line.text)
    return lines


def parse_blocker_text(
    text: str, dialect: Dialect = Dialect.MARKDOWN
) -> BlockerSequence:
    """Parse a standalone blockers document (no section header needed)."""
    lines = []
    for raw in text.replace("\r\n", "\n").split("\n"):
        if not raw.strip():
            continue
        if is_blockers_header(dialect, raw):
            continue
        depth = len(raw) - len(raw.lstrip("\t"))
        lines.append(classify_blocker_line(dialect, raw[depth:], depth))
    return BlockerSequence(lines=tuple(lines))


def render_blocker_text(
    blockers: BlockerSequence, dialect: Dialect = Dialect.MARKDOWN
) -> str:
    rendered = render_blocker_lines(blockers, dialect)
    return "\n".join(rendered) + "\n" if rendered else ""


def split_blockers(
    body: str, dialect: Dialect = Dialect.MARKDOWN
) -> tuple[str, BlockerSequence]:
    """Separate the blockers section from remote body text.

    The section starts at the first top-level blockers header and runs to
    the end of the body.

    Returns:
        ``(body_without_section, blockers)``.
    """
    lines = body.split("\n")
    for index, line in enumerate(lines):
        if not line.startswith((" ", "\t")) and is_blockers_header(
            dialect, line
        ):
            head = lines[:index]
            while head and not head[-1].strip():
                head.pop()
            section = "\n".join(lines[index + 1:])
            return "\n".join(head), parse_blocker_text(section, dialect)
    return body, BlockerSequence()


def join_blockers(
    body: str,
    blockers: BlockerSequence,
    dialect: Dialect = Dialect.MARKDOWN,
) -> str:
    """Inverse of ``split_blockers``."""
    if not blockers.lines:
        return body
    parts = [blockers_header(dialect)]
    parts.extend(render_blocker_lines(blockers, dialect))
    section = "\n".join(parts)
    if not body.strip():
        return section
    return f"{body.rstrip()}\n\n{section}"
