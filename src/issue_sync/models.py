"""Document model for issue trees.

An ``Issue`` owns its comments, its blockers section and its sub-issues.
The tree only stores forward (parent -> child) references; ancestry is
reconstructed on demand by ``walk()`` or carried explicitly as a list of
``FetchedIssue`` values.

Key design choices:

* **Frozen models** -- every type is an immutable pydantic model, so the
  three merge inputs (local, consensus, remote) can share sub-trees and
  structural equality is the generated ``__eq__``.  Edits go through
  ``model_copy(update=...)``.
* **Identity from URLs** -- an issue is identified by its URL
  (``https://github.com/{owner}/{repo}/issues/{n}`` or, for virtual
  projects, ``local:{owner}/{repo}#{n}``).  ``url is None`` means the
  issue is pending creation.
* **Presentation-insensitive comparison** -- ``Issue.equivalent()``
  ignores what the text format does not show: authors, trailing
  whitespace and the content of closed sub-issues hidden behind a fold.
"""

from __future__ import annotations

import hashlib
import re
from enum import Enum
from typing import Iterator, NamedTuple

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------

_GITHUB_ISSUE_RE = re.compile(
    r"^(?:https?://)?github\.com/(?P<owner>[^/\s]+)/(?P<repo>[^/\s]+)"
    r"/issues/(?P<number>\d+)$"
)
_LOCAL_ISSUE_RE = re.compile(
    r"^local:(?P<owner>[^/\s]+)/(?P<repo>[^#\s]+)#(?P<number>\d+)$"
)
_TRAILING_NUMBER_RE = re.compile(r"/(?P<number>\d+)$")
_COMMENT_URL_RE = re.compile(r"^(?P<issue>\S+)#issuecomment-(?P<id>\d+)$")


class IssueRef(NamedTuple):
    """Owner, repo and number extracted from an issue URL."""

    owner: str | None
    repo: str | None
    number: int | None
    virtual: bool = False


def parse_issue_url(url: str) -> IssueRef:
    """Extract identity parts from an issue URL.

    Unknown URL shapes still yield a number when the URL ends in ``/N``.
    """
    match = _GITHUB_ISSUE_RE.match(url)
    if match:
        return IssueRef(
            match["owner"], match["repo"], int(match["number"])
        )
    match = _LOCAL_ISSUE_RE.match(url)
    if match:
        return IssueRef(
            match["owner"], match["repo"], int(match["number"]), True
        )
    match = _TRAILING_NUMBER_RE.search(url)
    if match:
        return IssueRef(None, None, int(match["number"]))
    return IssueRef(None, None, None)


def issue_url(
    owner: str, repo: str, number: int, virtual: bool = False
) -> str:
    """Build the canonical URL for an issue."""
    if virtual:
        return f"local:{owner}/{repo}#{number}"
    return f"https://github.com/{owner}/{repo}/issues/{number}"


def comment_url(issue_url_: str, comment_id: int) -> str:
    """Build the URL of a comment on the given issue."""
    return f"{issue_url_}#issuecomment-{comment_id}"


def parse_comment_url(url: str) -> tuple[str, int] | None:
    """Split a comment URL into ``(issue_url, comment_id)``."""
    match = _COMMENT_URL_RE.match(url)
    if match is None:
        return None
    return match["issue"], int(match["id"])


def normalize_text(text: str) -> str:
    """Normalise text for comparison.

    Strips the BOM, converts CRLF to LF, right-strips every line and drops
    trailing empty lines.
    """
    text = text.lstrip("\ufeff").replace("\r\n", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    while lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def path_hash(text: str) -> str:
    """Stable short digest used to key per-path records."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Close state
# ---------------------------------------------------------------------------


class CloseKind(str, Enum):
    """How an issue is (or is not) closed."""

    OPEN = "open"
    CLOSED = "closed"
    NOT_PLANNED = "not_planned"
    DUPLICATE = "duplicate"


class CloseState(BaseModel):
    """Open/closed state of an issue as shown in its checkbox.

    Attributes:
        kind: The close kind.
        duplicate_of: Target issue number when ``kind`` is DUPLICATE.
    """

    kind: CloseKind = CloseKind.OPEN
    duplicate_of: int | None = None

    model_config = {"frozen": True}

    @classmethod
    def duplicate(cls, number: int) -> CloseState:
        return cls(kind=CloseKind.DUPLICATE, duplicate_of=number)

    @classmethod
    def from_checkbox(cls, text: str) -> CloseState | None:
        """Decode checkbox content; ``None`` when it is not valid."""
        if text == " ":
            return cls()
        if text in ("x", "X"):
            return cls(kind=CloseKind.CLOSED)
        if text == "-":
            return cls(kind=CloseKind.NOT_PLANNED)
        if text.isdigit():
            return cls.duplicate(int(text))
        return None

    def to_checkbox(self) -> str:
        match self.kind:
            case CloseKind.OPEN:
                return " "
            case CloseKind.CLOSED:
                return "x"
            case CloseKind.NOT_PLANNED:
                return "-"
            case CloseKind.DUPLICATE:
                return str(self.duplicate_of)

    @property
    def is_closed(self) -> bool:
        return self.kind != CloseKind.OPEN

    @property
    def is_duplicate(self) -> bool:
        return self.kind == CloseKind.DUPLICATE

    def remote_state(self) -> str:
        """GitHub ``state`` value: ``"open"`` or ``"closed"``."""
        return "closed" if self.is_closed else "open"

    def state_reason(self) -> str | None:
        """GitHub ``state_reason`` value for closed issues."""
        match self.kind:
            case CloseKind.CLOSED:
                return "completed"
            case CloseKind.NOT_PLANNED:
                return "not_planned"
            case CloseKind.DUPLICATE:
                return "duplicate"
        return None

    @classmethod
    def from_remote(
        cls, state: str, state_reason: str | None = None
    ) -> CloseState:
        """Build a close state from GitHub ``state``/``state_reason``.

        The remote API does not expose the target of a duplicate, so a
        remote duplicate is represented as a plain closed issue.
        """
        if state != "closed":
            return cls()
        if state_reason == "not_planned":
            return cls(kind=CloseKind.NOT_PLANNED)
        return cls(kind=CloseKind.CLOSED)


# ---------------------------------------------------------------------------
# Comments and blockers
# ---------------------------------------------------------------------------


class Comment(BaseModel):
    """A comment on an issue.

    Attributes:
        id: Remote comment id; ``None`` until the comment is pushed.
        body: Comment text.
        author: Login of the author, when known.
        owned: ``False`` for comments by other users (read-only).
    """

    id: int | None = None
    body: str = ""
    author: str | None = None
    owned: bool = True

    model_config = {"frozen": True}

    @property
    def is_pending(self) -> bool:
        return self.id is None


class BlockerLine(BaseModel):
    """One line of a blockers section.

    Attributes:
        text: Line content without list prefix or header marks.
        depth: Nesting depth relative to the section.
        header_level: 1..6 for a grouping header, ``None`` for an item.
    """

    text: str
    depth: int = 0
    header_level: int | None = None

    model_config = {"frozen": True}

    @property
    def is_header(self) -> bool:
        return self.header_level is not None


class BlockerSequence(BaseModel):
    """Ordered, optionally headered list of blockers.

    Behaves as a stack: the last item is the *current* blocker.
    """

    lines: tuple[BlockerLine, ...] = ()

    model_config = {"frozen": True}

    def __len__(self) -> int:
        return len(self.lines)

    def is_empty(self) -> bool:
        return self.current() is None

    def items(self) -> list[BlockerLine]:
        return [line for line in self.lines if not line.is_header]

    def current(self) -> BlockerLine | None:
        """Return the last item (headers are skipped)."""
        for line in reversed(self.lines):
            if not line.is_header:
                return line
        return None

    def add(
        self, text: str, depth: int = 0, header_level: int | None = None
    ) -> BlockerSequence:
        """Return a new sequence with a line pushed on top."""
        line = BlockerLine(
            text=text, depth=depth, header_level=header_level
        )
        return BlockerSequence(lines=self.lines + (line,))

    def pop(self) -> tuple[BlockerSequence, BlockerLine | None]:
        """Remove the last line, returning the new sequence and the line."""
        if not self.lines:
            return self, None
        return BlockerSequence(lines=self.lines[:-1]), self.lines[-1]

    def entries(self) -> list[tuple[str, bool]]:
        """Return ``(text, is_header)`` for every line."""
        return [(line.text, line.is_header) for line in self.lines]

    def parent_headers(self, index: int) -> list[str]:
        """Headers that govern the line at *index*, outermost first."""
        headers: list[str] = []
        ceiling = 7
        for line in reversed(self.lines[:index]):
            if line.header_level is not None and line.header_level < ceiling:
                headers.insert(0, line.text)
                ceiling = line.header_level
                if ceiling == 1:
                    break
        return headers

    def current_with_context(
        self, ownership_hierarchy: list[str] | None = None
    ) -> str | None:
        """Current blocker prefixed by its ownership and headers.

        Parts are joined with ``": "``, e.g.
        ``"project: Phase 1: write tests"``.
        """
        for index in range(len(self.lines) - 1, -1, -1):
            line = self.lines[index]
            if line.is_header:
                continue
            parts = list(ownership_hierarchy or [])
            parts.extend(self.parent_headers(index))
            parts.append(line.text)
            return ": ".join(parts)
        return None


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------


class Issue(BaseModel):
    """A node of an issue tree.

    Attributes:
        title: Issue title.
        url: Identity URL; ``None`` while pending creation.
        close_state: Checkbox state.
        labels: Label names in display order.
        owned: ``False`` when the body belongs to another user.
        author: Login of the issue author, when known.
        body: Issue description (without the blockers section).
        comments: Comments in creation order.
        blockers: Blockers section.
        children: Sub-issues in display order.
        folded: ``True`` when the text showed a fold marker instead of
            the body, so body, comments, blockers and children are unknown.
    """

    title: str
    url: str | None = None
    close_state: CloseState = Field(default_factory=CloseState)
    labels: tuple[str, ...] = ()
    owned: bool = True
    author: str | None = None
    body: str = ""
    comments: tuple[Comment, ...] = ()
    blockers: BlockerSequence = Field(default_factory=BlockerSequence)
    children: tuple[Issue, ...] = ()
    folded: bool = False

    model_config = {"frozen": True}

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def ref(self) -> IssueRef:
        if self.url is None:
            return IssueRef(None, None, None)
        return parse_issue_url(self.url)

    @property
    def number(self) -> int | None:
        return self.ref.number

    @property
    def owner(self) -> str | None:
        return self.ref.owner

    @property
    def repo(self) -> str | None:
        return self.ref.repo

    @property
    def is_pending(self) -> bool:
        return self.url is None

    @property
    def is_virtual(self) -> bool:
        return self.ref.virtual

    def display_id(self) -> str:
        ref = self.ref
        if ref.number is None:
            return f"(pending) {self.title}"
        if ref.owner is None:
            return f"#{ref.number}"
        return f"{ref.owner}/{ref.repo}#{ref.number}"

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def has_children(self) -> bool:
        return bool(self.children)

    def find_child(self, number: int) -> Issue | None:
        for child in self.children:
            if child.number == number:
                return child
        return None

    def clone(self) -> Issue:
        """Recursive deep copy."""
        return self.model_copy(deep=True)

    def equivalent(self, other: Issue) -> bool:
        """Compare ignoring presentation-only differences."""
        return presentation_key(self, True) == presentation_key(
            other, True
        )


def presentation_key(issue: Issue, is_root: bool = False) -> tuple:
    """Comparison key of a subtree; closed or folded sub-issues compare by
    their title line only."""
    head = (
        issue.url,
        issue.title.strip(),
        issue.labels,
        issue.close_state,
        issue.owned,
    )
    if not is_root and (issue.folded or issue.close_state.is_closed):
        return head
    comments = tuple(
        (c.id, normalize_text(c.body), c.owned) for c in issue.comments
    )
    children = tuple(
        presentation_key(child, False) for child in issue.children
    )
    return head + (
        normalize_text(issue.body),
        comments,
        issue.blockers.lines,
        children,
    )


# ---------------------------------------------------------------------------
# Tree walking
# ---------------------------------------------------------------------------


class TreeNode(NamedTuple):
    """A node yielded by ``walk()``.

    Attributes:
        issue: The node itself.
        path: Child indices from the root (empty for the root).
        ancestors: Issues from the root down to the node's parent.
    """

    issue: Issue
    path: tuple[int, ...]
    ancestors: tuple[Issue, ...]


def walk(root: Issue) -> Iterator[TreeNode]:
    """Yield every node of the tree in pre-order."""
    stack = [TreeNode(root, (), ())]
    while stack:
        node = stack.pop()
        yield node
        children = node.issue.children
        for index in range(len(children) - 1, -1, -1):
            stack.append(
                TreeNode(
                    children[index],
                    node.path + (index,),
                    node.ancestors + (node.issue,),
                )
            )


def node_at(root: Issue, path: tuple[int, ...]) -> Issue:
    node = root
    for index in path:
        node = node.children[index]
    return node


def replace_at(
    root: Issue, path: tuple[int, ...], replacement: Issue
) -> Issue:
    """Return a copy of *root* with the node at *path* replaced."""
    if not path:
        return replacement
    head, rest = path[0], path[1:]
    children = list(root.children)
    children[head] = replace_at(children[head], rest, replacement)
    return root.model_copy(update={"children": tuple(children)})


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class FetchedIssue(BaseModel):
    """Ancestry element: enough to rebuild a storage path offline."""

    owner: str
    repo: str
    number: int
    title: str

    model_config = {"frozen": True}


class ProjectMeta(BaseModel):
    """Per-project metadata stored in ``.meta.json``.

    Attributes:
        owner: Repository owner.
        repo: Repository name.
        virtual_project: ``True`` when the project has no remote.
        next_virtual_issue_number: Next locally allocated number.
    """

    owner: str
    repo: str
    virtual_project: bool = False
    next_virtual_issue_number: int = 1

    model_config = {"frozen": True}


class ConflictState(BaseModel):
    """An unresolved conflict recorded by the conflict tracker.

    Attributes:
        path: File holding the conflict markers.
        detected_at: ISO 8601 timestamp of when the conflict was recorded.
        reason: Short description of what conflicted.
    """

    path: str
    detected_at: str | None = None
    reason: str = ""

    model_config = {"frozen": True}


Issue.model_rebuild()
