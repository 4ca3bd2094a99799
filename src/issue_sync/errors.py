"""Error taxonomy for issue_sync.

Every failure the tool reports to the user derives from ``IssueSyncError``
so the CLI can render it as a one-line message.  The families are:

- ``ParseError`` -- malformed document; carries line/column and origin.
- ``ConflictError`` -- an unresolved three-way conflict.
  ``ConflictBlockedError`` is the variant raised by the conflict gate.
- ``ReferenceNotFoundError`` -- a Duplicate target or parent issue that
  does not exist remotely.
- ``RemoteError`` -- network or API failure.  ``RemoteNotFoundError`` for
  404 responses.
- ``StorageError`` -- filesystem or version-history failure.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path


class IssueSyncError(Exception):
    """Base class for all user-facing errors."""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class ParseErrorKind(str, Enum):
    """Categories of document parse failures."""

    EMPTY_FILE = "empty_file"
    INVALID_TITLE = "invalid_title"
    INVALID_CHECKBOX = "invalid_checkbox"
    MALFORMED_MARKER = "malformed_marker"
    ORPHAN_BLOCKERS = "orphan_blockers"
    BAD_INDENTATION = "bad_indentation"
    UNEXPECTED_CONTENT = "unexpected_content"


class ParseError(IssueSyncError):
    """A document could not be parsed.

    Attributes:
        kind: Failure category.
        message: Human-readable description.
        line: 1-based line number, or ``None`` for whole-file errors.
        column: 1-based column, or ``None``.
        origin: Display name of the source (usually a file path).
        source_line: The offending line, when known.
    """

    def __init__(
        self,
        kind: ParseErrorKind,
        message: str,
        *,
        line: int | None = None,
        column: int | None = None,
        origin: str = "<string>",
        source_line: str | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.line = line
        self.column = column
        self.origin = origin
        self.source_line = source_line
        super().__init__(self._render())

    def _render(self) -> str:
        location = self.origin
        if self.line is not None:
            location += f":{self.line}"
            if self.column is not None:
                location += f":{self.column}"
        text = f"{location}: {self.message}"
        if self.source_line is not None:
            text += f"\n    {self.source_line.expandtabs(4)}"
        return text


# ---------------------------------------------------------------------------
# Merge / conflicts
# ---------------------------------------------------------------------------


class ConflictError(IssueSyncError):
    """Local and remote changed the same unit since the last consensus.

    Attributes:
        units: Human-readable identifiers of the conflicting units.
        path: File the conflict markers were written to, if any.
    """

    def __init__(
        self,
        message: str,
        units: list[str] | None = None,
        path: Path | None = None,
    ) -> None:
        self.units = units or []
        self.path = path
        super().__init__(message)


class ConflictBlockedError(ConflictError):
    """A previously recorded conflict still has markers in its file."""

    def __init__(self, path: Path) -> None:
        super().__init__(
            f"Unresolved conflict in {path}. Resolve the conflict markers "
            "(<<<<<<<, =======, >>>>>>>) before running another command.",
            path=path,
        )


# ---------------------------------------------------------------------------
# References / remote / storage
# ---------------------------------------------------------------------------


class ReferenceNotFoundError(IssueSyncError):
    """An issue referenced by the document does not exist remotely."""

    def __init__(self, owner: str, repo: str, number: int, role: str) -> None:
        self.owner = owner
        self.repo = repo
        self.number = number
        self.role = role
        super().__init__(
            f"{role} issue {owner}/{repo}#{number} does not exist"
        )


class RemoteError(IssueSyncError):
    """The remote API call failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class RemoteNotFoundError(RemoteError):
    """The remote API answered 404."""


class StorageError(IssueSyncError):
    """A filesystem or version-history operation failed."""
