"""Tree-to-text encoding of issue documents.

Output is canonical: tab indentation, sections in the order body,
comments, blockers, sub-issues, and one indent-only separator line between
consecutive sections (never between the title line and the first section).
Encoding is deterministic, so ``serialize(parse(serialize(x)))`` equals
``serialize(x)``.
"""

from __future__ import annotations

from ..models import Comment, Issue, comment_url
from .blockers import render_blocker_lines
from .markers import (
    Dialect,
    blockers_header,
    comment_marker,
    fold_marker,
    issue_marker,
)


def _title_line(issue: Issue, dialect: Dialect, is_root: bool) -> str:
    parts = [f"- [{issue.close_state.to_checkbox()}]"]
    if issue.labels or issue.title.startswith("["):
        # An empty group keeps a bracketed title from reading as labels.
        parts.append(f"[{', '.join(issue.labels)}]")
    parts.append(issue.title)
    if issue.url is not None:
        parts.append(
            issue_marker(
                dialect,
                issue.url,
                sub=not is_root,
                immutable=not issue.owned,
            )
        )
    return " ".join(parts)


def _text_lines(text: str, indent: str) -> list[str]:
    return [indent + line if line else indent for line in text.split("\n")]


def _comment_lines(
    issue: Issue, comment: Comment, dialect: Dialect, indent: str
) -> list[str]:
    if comment.id is None or issue.url is None:
        marker = comment_marker(dialect, None)
    else:
        marker = comment_marker(
            dialect,
            comment_url(issue.url, comment.id),
            immutable=not comment.owned,
        )
    lines = [indent + marker]
    if comment.body:
        content_indent = indent if comment.owned else indent + "\t"
        lines.extend(_text_lines(comment.body, content_indent))
    return lines


def _issue_lines(
    issue: Issue,
    dialect: Dialect,
    depth: int,
    render_closed: bool,
    fold_hint: bool,
) -> list[str]:
    is_root = depth == 0
    indent = "\t" * depth
    content_indent = indent + "\t"
    lines = [indent + _title_line(issue, dialect, is_root)]

    fold = issue.folded or (
        not is_root and issue.close_state.is_closed and not render_closed
    )
    if fold:
        lines.append(content_indent + fold_marker(dialect, hint=fold_hint))
        return lines

    sections: list[list[str]] = []
    if issue.body:
        body_indent = content_indent if issue.owned else content_indent + "\t"
        sections.append(_text_lines(issue.body, body_indent))
    for comment in issue.comments:
        sections.append(_comment_lines(issue, comment, dialect, content_indent))
    if issue.blockers.lines:
        sections.append(
            [content_indent + blockers_header(dialect)]
            + render_blocker_lines(issue.blockers, dialect, content_indent)
        )
    for child in issue.children:
        sections.append(
            _issue_lines(child, dialect, depth + 1, render_closed, fold_hint)
        )

    for index, section in enumerate(sections):
        if index:
            lines.append(content_indent)
        lines.extend(section)
    return lines


def serialize(
    issue: Issue,
    dialect: Dialect = Dialect.MARKDOWN,
    render_closed: bool = False,
    fold_hint: bool = False,
) -> str:
    """Encode an issue tree as a document.

    Args:
        issue: Root of the tree.
        dialect: Marker dialect to write.
        render_closed: Write the content of closed sub-issues instead of
            the fold marker.
        fold_hint: Use the fold marker variant that names the unfold flag.

    Returns:
        Document text ending in a newline.
    """
    lines = _issue_lines(issue, dialect, 0, render_closed, fold_hint)
    return "\n".join(lines) + "\n"
