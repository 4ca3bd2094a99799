"""Dialect-specific marker encodings.

Both dialects share the same line structure and differ only in how the
inline markers and headers are spelled:

======================  ===============================  ======================
concept                 markdown                         typst
======================  ===============================  ======================
issue identity          ``<!-- URL -->``                 ``// URL``
sub-issue identity      ``<!--sub URL -->``              ``// sub URL``
read-only content       ``<!--immutable URL -->``        ``// immutable URL``
pending comment         ``<!-- new comment -->``         ``// new comment``
blockers header         ``# Blockers``                   ``= Blockers``
fold marker             ``<!-- omitted -->``             ``// omitted``
======================  ===============================  ======================
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import NamedTuple


class Dialect(str, Enum):
    """Concrete syntax of an issue document, named by file extension."""

    MARKDOWN = "md"
    TYPST = "typ"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def header_char(self) -> str:
        return "#" if self is Dialect.MARKDOWN else "="

    @classmethod
    def from_extension(cls, extension: str) -> Dialect:
        """Resolve ``"md"``, ``".typ"`` etc.

        Raises:
            ValueError: If the extension is not a supported dialect.
        """
        ext = extension.lower().lstrip(".")
        for dialect in cls:
            if dialect.value == ext:
                return dialect
        raise ValueError(
            f"Unsupported issue file extension '{extension}'. "
            f"Valid extensions: {[d.value for d in cls]}"
        )

    @classmethod
    def from_path(cls, path: Path) -> Dialect:
        """Dialect of an issue file, ignoring a trailing ``.bak``."""
        name = path.name
        if name.endswith(".bak"):
            name = name[: -len(".bak")]
        return cls.from_extension(Path(name).suffix)


class MarkerKind(str, Enum):
    ISSUE = "issue"
    COMMENT = "comment"
    NEW_COMMENT = "new_comment"
    BLOCKERS = "blockers"
    OMITTED = "omitted"
    FOLD_END = "fold_end"


class Marker(NamedTuple):
    """A decoded marker.

    Attributes:
        kind: What the marker introduces.
        url: Issue or comment URL, when the marker carries one.
        sub: The issue line is a sub-issue of the enclosing issue.
        immutable: The content belongs to another user.
    """

    kind: MarkerKind
    url: str | None = None
    sub: bool = False
    immutable: bool = False


class MalformedMarker(ValueError):
    """Raised when a marker is recognisable but cannot be decoded."""


_FLAGS = ("sub", "immutable")

_MD_TRAILING_RE = re.compile(r"\s*<!--(?P<inner>.*?)-->\s*$")
_MD_LINE_RE = re.compile(r"^<!--(?P<inner>.*?)-->$")
_TYP_TRAILING_RE = re.compile(r"(?:^|\s+)//(?P<inner>[^/].*|)$")
_TYP_LINE_RE = re.compile(r"^//(?P<inner>.*)$")

_MD_HEADER_RE = re.compile(r"^(?P<marks>#{1,6})\s+(?P<text>.*?)\s*$")
_TYP_HEADER_RE = re.compile(r"^(?P<marks>={1,6})\s+(?P<text>.*?)\s*$")
_BLOCKERS_WORD_RE = re.compile(r"^blockers?\s*:?$", re.IGNORECASE)
_MD_BOLD_BLOCKERS_RE = re.compile(
    r"^\*\*blockers?\s*:?\*\*\s*:?$", re.IGNORECASE
)

SHORTHAND_BLOCKERS = "!b"
SHORTHAND_COMMENT = "!c"


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _wrap(dialect: Dialect, flags: list[str], payload: str) -> str:
    if dialect is Dialect.TYPST:
        return "// " + " ".join(flags + [payload])
    if flags:
        return f"<!--{' '.join(flags)} {payload} -->"
    return f"<!-- {payload} -->"


def issue_marker(
    dialect: Dialect, url: str, sub: bool = False, immutable: bool = False
) -> str:
    flags = [name for name, on in zip(_FLAGS, (sub, immutable)) if on]
    return _wrap(dialect, flags, url)


def comment_marker(
    dialect: Dialect, url: str | None, immutable: bool = False
) -> str:
    """Marker introducing a comment; ``url=None`` for a pending one."""
    if url is None:
        return _wrap(dialect, [], "new comment")
    return _wrap(dialect, ["immutable"] if immutable else [], url)


def blockers_header(dialect: Dialect) -> str:
    return f"{dialect.header_char} Blockers"


def fold_marker(dialect: Dialect, hint: bool = False) -> str:
    """Placeholder written instead of a closed sub-issue's content.

    Args:
        dialect: Target dialect.
        hint: Mention the flag that unfolds closed issues.
    """
    text = "omitted"
    if hint:
        text += " (use --render-closed to unfold)"
    return _wrap(dialect, [], text)


def header_line(dialect: Dialect, level: int, text: str) -> str:
    return f"{dialect.header_char * level} {text}"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _looks_like_url(token: str) -> bool:
    return "/" in token or token.startswith("local:")


def _decode_payload(inner: str) -> Marker | None:
    """Decode the text between the comment delimiters."""
    words = inner.split()
    if not words:
        raise MalformedMarker("empty marker")
    lowered = " ".join(words).lower()
    if lowered == "new comment":
        return Marker(MarkerKind.NEW_COMMENT)
    if lowered.startswith("omitted"):
        return Marker(MarkerKind.OMITTED)
    if lowered == ",}}}":
        return Marker(MarkerKind.FOLD_END)
    if _BLOCKERS_WORD_RE.match(lowered):
        return Marker(MarkerKind.BLOCKERS)

    *flags, url = words
    unknown = [f for f in flags if f.lower() not in _FLAGS]
    if unknown:
        raise MalformedMarker(f"unknown marker flags {unknown}")
    if not _looks_like_url(url):
        return None
    lowered_flags = {f.lower() for f in flags}
    kind = (
        MarkerKind.COMMENT
        if "#issuecomment-" in url
        else MarkerKind.ISSUE
    )
    return Marker(
        kind,
        url=url,
        sub="sub" in lowered_flags,
        immutable="immutable" in lowered_flags,
    )


def split_title_marker(
    dialect: Dialect, text: str
) -> tuple[str, Marker | None]:
    """Separate a trailing identity marker from a title line.

    Returns:
        ``(text_without_marker, marker_or_None)``.

    Raises:
        MalformedMarker: If a marker is present but cannot be decoded.
    """
    if dialect is Dialect.MARKDOWN:
        match = _MD_TRAILING_RE.search(text)
        if match is None:
            if "<!--" in text:
                raise MalformedMarker("unterminated '<!--' marker")
            return text, None
    else:
        match = _TYP_TRAILING_RE.search(text)
        if match is None:
            return text, None
        words = match["inner"].split()
        if not words or not _looks_like_url(words[-1]):
            return text, None

    marker = _decode_payload(match["inner"])
    if marker is None or marker.kind is not MarkerKind.ISSUE:
        raise MalformedMarker(
            f"expected an issue URL marker, got '{match.group(0).strip()}'"
        )
    return text[: match.start()].rstrip(), marker


def parse_line_marker(dialect: Dialect, text: str) -> Marker | None:
    """Decode a line that consists solely of a marker.

    Returns ``None`` when the line is ordinary content.
    """
    stripped = text.strip()
    pattern = _MD_LINE_RE if dialect is Dialect.MARKDOWN else _TYP_LINE_RE
    match = pattern.match(stripped)
    if match is None:
        return None
    try:
        marker = _decode_payload(match["inner"])
    except MalformedMarker:
        return None
    if marker is not None and marker.kind is MarkerKind.ISSUE:
        return None
    return marker


def parse_header(dialect: Dialect, text: str) -> tuple[int, str] | None:
    """Decode a header line into ``(level, text)``."""
    pattern = (
        _MD_HEADER_RE if dialect is Dialect.MARKDOWN else _TYP_HEADER_RE
    )
    match = pattern.match(text.strip())
    if match is None:
        return None
    return len(match["marks"]), match["text"]


def is_blockers_header(dialect: Dialect, text: str) -> bool:
    """Whether *text* opens a blockers section in *dialect*.

    Accepts any header level, a trailing colon and any case.  Markdown
    also accepts ``**Blockers**`` and the legacy ``<!--blockers-->``.
    """
    stripped = text.strip()
    header = parse_header(dialect, stripped)
    if header is not None and _BLOCKERS_WORD_RE.match(header[1]):
        return True
    if dialect is Dialect.MARKDOWN and _MD_BOLD_BLOCKERS_RE.match(stripped):
        return True
    marker = parse_line_marker(dialect, stripped)
    return marker is not None and marker.kind is MarkerKind.BLOCKERS
