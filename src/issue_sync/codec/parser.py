"""Text-to-tree decoding of issue documents.

The grammar is line oriented.  Every line is reduced to ``(depth, text)``
where depth is the number of leading tabs; an issue at depth ``d`` owns
every following line deeper than ``d``:

* the first line is the title: ``- [C] [labels] Title <marker>``;
* lines at ``d + 1`` are the body until a section opens;
* a comment marker at ``d + 1`` opens a comment section;
* a blockers header at ``d + 1`` opens the blockers section;
* a checkbox line at ``d + 1`` is a sub-issue, parsed recursively; once
  sub-issues start, nothing but further sub-issues may follow.

Content that belongs to another user is indented one extra tab, which is
stripped here.

Key design choices:

* **Preprocessing before grammar** -- indentation normalisation and
  shorthand expansion run on the raw text first and keep a 1:1 line
  mapping, so error line numbers refer to what the user sees.
* **Errors, never crashes** -- every malformed construct raises
  ``ParseError`` with the offending line attached.
"""

from __future__ import annotations

import logging
import re
from typing import NamedTuple

from ..errors import ParseError, ParseErrorKind
from ..models import BlockerSequence, CloseState, Comment, Issue, parse_comment_url
from .blockers import classify_blocker_line
from .indent import expand_shorthands, normalize_indentation
from .markers import (
    Dialect,
    MalformedMarker,
    MarkerKind,
    is_blockers_header,
    parse_line_marker,
    split_title_marker,
)

logger = logging.getLogger(__name__)

_TITLE_RE = re.compile(r"^- \[(?P<box>[^\]]*)\](?:\s+(?P<rest>.*))?$")
_LABELS_RE = re.compile(r"^\[(?P<labels>[^\]]*)\]\s+(?P<title>.*)$")


class ParseContext:
    """Source text plus a display name, used to build error messages.

    Attributes:
        content: The raw document text.
        name: Display name of the source, usually the file path.
    """

    def __init__(self, content: str, name: str = "<string>") -> None:
        self.content = content
        self.name = name
        self._lines = content.replace("\r\n", "\n").split("\n")

    def line(self, lineno: int) -> str | None:
        """Return the 1-based source line, or ``None`` when out of range."""
        if 1 <= lineno <= len(self._lines):
            return self._lines[lineno - 1]
        return None

    def line_of_offset(self, offset: int) -> int:
        """1-based line number containing a character offset."""
        return self.content.count("\n", 0, max(offset, 0)) + 1

    def error(
        self,
        kind: ParseErrorKind,
        message: str,
        lineno: int | None = None,
        column: int | None = None,
    ) -> ParseError:
        return ParseError(
            kind,
            message,
            line=lineno,
            column=column,
            origin=self.name,
            source_line=self.line(lineno) if lineno is not None else None,
        )


class _Line(NamedTuple):
    lineno: int
    depth: int
    text: str

    @property
    def blank(self) -> bool:
        return not self.text.strip()


def _split_line(lineno: int, raw: str) -> _Line:
    stripped = raw.lstrip("\t")
    return _Line(lineno, len(raw) - len(stripped), stripped.rstrip())


def _split_labels(rest: str) -> tuple[tuple[str, ...], str]:
    match = _LABELS_RE.match(rest)
    if match is None:
        return (), rest.strip()
    labels = tuple(
        name.strip() for name in match["labels"].split(",") if name.strip()
    )
    return labels, match["title"].strip()


class _Section:
    """Lines collected for the body or one comment."""

    def __init__(self, owned: bool, comment_id: int | None = None) -> None:
        self.owned = owned
        self.comment_id = comment_id
        self.lines: list[str] = []

    def text(self) -> str:
        lines = list(self.lines)
        while lines and not lines[-1]:
            lines.pop()
        while lines and not lines[0]:
            lines.pop(0)
        return "\n".join(lines)


class _Parser:
    def __init__(
        self, lines: list[str], context: ParseContext, dialect: Dialect
    ) -> None:
        self.records = [
            _split_line(index + 1, raw) for index, raw in enumerate(lines)
        ]
        self.context = context
        self.dialect = dialect
        self.pos = 0

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    def _peek(self) -> _Line | None:
        if self.pos < len(self.records):
            return self.records[self.pos]
        return None

    def _advance(self) -> _Line:
        record = self.records[self.pos]
        self.pos += 1
        return record

    def _skip_blank(self) -> None:
        while (record := self._peek()) is not None and record.blank:
            self.pos += 1

    def _error(
        self,
        kind: ParseErrorKind,
        message: str,
        record: _Line,
        column: int | None = None,
    ) -> ParseError:
        return self.context.error(kind, message, record.lineno, column)

    # ------------------------------------------------------------------
    # Document
    # ------------------------------------------------------------------

    def parse_document(self) -> Issue:
        self._skip_blank()
        first = self._peek()
        if first is None:
            raise self.context.error(
                ParseErrorKind.EMPTY_FILE, "document is empty"
            )
        if is_blockers_header(self.dialect, first.text):
            raise self._error(
                ParseErrorKind.ORPHAN_BLOCKERS,
                "blockers section has no owning issue",
                first,
            )
        if first.depth != 0:
            raise self._error(
                ParseErrorKind.BAD_INDENTATION,
                "the root issue line must not be indented",
                first,
                column=1,
            )

        root = self._parse_issue(0, is_root=True)

        self._skip_blank()
        leftover = self._peek()
        if leftover is not None:
            if is_blockers_header(self.dialect, leftover.text):
                raise self._error(
                    ParseErrorKind.ORPHAN_BLOCKERS,
                    "blockers section has no owning issue",
                    leftover,
                )
            raise self._error(
                ParseErrorKind.BAD_INDENTATION,
                "content outside the root issue; indent it under the "
                "root issue line",
                leftover,
                column=1,
            )
        return root

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _child_title(self, record: _Line) -> bool:
        """Whether a content-depth line opens a sub-issue."""
        match = _TITLE_RE.match(record.text)
        if match is None:
            return False
        if CloseState.from_checkbox(match["box"]) is not None:
            return bool((match["rest"] or "").strip())
        # An invalid checkbox only counts when the line carries an issue
        # marker; otherwise it is ordinary list content.
        try:
            _, marker = split_title_marker(self.dialect, match["rest"] or "")
        except MalformedMarker:
            return False
        return marker is not None

    def _parse_title(self, record: _Line) -> dict:
        match = _TITLE_RE.match(record.text)
        if match is None:
            raise self._error(
                ParseErrorKind.INVALID_TITLE,
                "expected an issue line like '- [ ] Title'",
                record,
                column=record.depth + 1,
            )
        state = CloseState.from_checkbox(match["box"])
        if state is None:
            raise self._error(
                ParseErrorKind.INVALID_CHECKBOX,
                f"invalid checkbox '[{match['box']}]'; expected ' ', 'x', "
                "'-' or a duplicate issue number",
                record,
                column=record.depth + 3,
            )
        try:
            rest, marker = split_title_marker(
                self.dialect, match["rest"] or ""
            )
        except MalformedMarker as exc:
            raise self._error(
                ParseErrorKind.MALFORMED_MARKER, str(exc), record
            ) from exc
        labels, title = _split_labels(rest)
        if not title:
            raise self._error(
                ParseErrorKind.INVALID_TITLE,
                "issue line has no title",
                record,
                column=record.depth + 1,
            )
        return {
            "title": title,
            "url": marker.url if marker else None,
            "close_state": state,
            "labels": labels,
            "owned": not marker.immutable if marker else True,
        }

    def _parse_issue(self, depth: int, is_root: bool) -> Issue:
        title_record = self._advance()
        fields = self._parse_title(title_record)
        content_depth = depth + 1

        body = _Section(fields["owned"])
        current: _Section = body
        comments: list[_Section] = []
        blocker_lines = []
        children: list[Issue] = []
        section = "body"
        saw_fold = False

        while (record := self._peek()) is not None:
            if record.blank:
                self._advance()
                if section in ("body", "comment"):
                    current.lines.append("")
                continue
            if record.depth < content_depth:
                break

            if record.depth == content_depth:
                if self._child_title(record):
                    children.append(self._parse_issue(content_depth, False))
                    section = "children"
                    continue
                if section == "children":
                    raise self._error(
                        ParseErrorKind.UNEXPECTED_CONTENT,
                        "only sub-issues may follow the first sub-issue",
                        record,
                        column=record.depth + 1,
                    )
                if is_blockers_header(self.dialect, record.text):
                    self._advance()
                    section = "blockers"
                    continue
                marker = parse_line_marker(self.dialect, record.text)
                if marker is not None:
                    self._advance()
                    if marker.kind is MarkerKind.COMMENT:
                        parsed = parse_comment_url(marker.url or "")
                        current = _Section(
                            not marker.immutable,
                            parsed[1] if parsed else None,
                        )
                        comments.append(current)
                        section = "comment"
                    elif marker.kind is MarkerKind.NEW_COMMENT:
                        current = _Section(True)
                        comments.append(current)
                        section = "comment"
                    elif marker.kind is MarkerKind.OMITTED:
                        saw_fold = True
                    continue

            self._advance()
            if section == "children":
                raise self._error(
                    ParseErrorKind.UNEXPECTED_CONTENT,
                    "only sub-issues may follow the first sub-issue",
                    record,
                    column=record.depth + 1,
                )
            if section == "blockers":
                blocker_lines.append(
                    classify_blocker_line(
                        self.dialect, record.text, record.depth - content_depth
                    )
                )
                continue
            base = content_depth
            if not current.owned and record.depth > content_depth:
                base += 1
            current.lines.append("\t" * (record.depth - base) + record.text)

        body_text = body.text()
        parsed_comments = tuple(
            Comment(id=c.comment_id, body=c.text(), owned=c.owned)
            for c in comments
        )
        folded = (
            saw_fold
            and not body_text
            and not parsed_comments
            and not blocker_lines
            and not children
        )
        if saw_fold and not folded:
            logger.debug(
                "Ignoring fold marker under '%s': the issue has content",
                fields["title"],
            )
        return Issue(
            **fields,
            body=body_text,
            comments=parsed_comments,
            blockers=BlockerSequence(lines=tuple(blocker_lines)),
            children=tuple(children),
            folded=folded,
        )


def parse(
    text: str,
    context: ParseContext | None = None,
    dialect: Dialect = Dialect.MARKDOWN,
) -> Issue:
    """Decode an issue document.

    Args:
        text: Document text in either tab or space indentation.
        context: Source description for error messages.
        dialect: Marker dialect of the document.

    Returns:
        The root issue with its whole subtree.

    Raises:
        ParseError: If the document is malformed.
    """
    if context is None:
        context = ParseContext(text)
    text = text.lstrip("\ufeff").replace("\r\n", "\n")
    text = expand_shorthands(normalize_indentation(text), dialect)
    return _Parser(text.split("\n"), context, dialect).parse_document()
