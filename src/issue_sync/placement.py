"""File placement strategy for issue trees.

Layout under ``{data_root}/issues/{owner}/{repo}/``:

* an issue without sub-issues is a flat file
  ``{number}_-_{title}.{ext}`` (``.bak`` appended when closed);
* an issue with sub-issues is a directory ``{number}_-_{title}/`` holding
  ``__main__.{ext}[.bak]`` plus one entry per sub-issue, recursively.

Every node file holds the node's whole subtree, so any file can be opened
on its own.  ``store_tree`` writes all new forms first and only then
deletes what the new layout made stale: the other format of a node that
switched between flat and directory, renamed titles, other dialects,
other ``__main__`` variants and entries of sub-issues that left the tree.

Key design choices:

* **Names carry identity** -- the leading number is the only part used to
  match entries; the title part is cosmetic and may change freely.
* **Protected files** -- callers can veto overwriting or deleting a file
  (e.g. one with local edits not yet synced); vetoed paths are reported
  back instead of being touched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, NamedTuple

from .codec import Dialect, serialize
from .errors import StorageError
from .file_handler import remove_path, write_file_atomic
from .models import FetchedIssue, Issue

logger = logging.getLogger(__name__)

MAIN_STEM = "__main__"
BAK_SUFFIX = ".bak"

_ENTRY_RE = re.compile(
    r"^(?P<number>\d+)(?:_-_(?P<title>[^.]*))?"
    r"(?P<ext>\.(?:md|typ)(?:\.bak)?)?$"
)
_ISSUE_FILE_RE = re.compile(r"\.(?:md|typ)(?:\.bak)?$")


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


def sanitize_title(title: str) -> str:
    """Keep alphanumerics, ``-`` and ``_``; spaces become ``_``."""
    kept = []
    for char in title:
        if char.isalnum() or char in "-_":
            kept.append(char)
        elif char == " ":
            kept.append("_")
    return "".join(kept).strip("_")


def issue_stem(number: int | None, title: str) -> str:
    """Directory name / file stem of an issue."""
    sanitized = sanitize_title(title)
    if number is None:
        return sanitized or "untitled"
    if not sanitized:
        return str(number)
    return f"{number}_-_{sanitized}"


def _with_suffix(stem: str, dialect: Dialect, closed: bool) -> str:
    name = f"{stem}.{dialect.extension}"
    return name + BAK_SUFFIX if closed else name


def issue_filename(
    number: int | None, title: str, dialect: Dialect, closed: bool
) -> str:
    return _with_suffix(issue_stem(number, title), dialect, closed)


def main_filename(dialect: Dialect, closed: bool) -> str:
    return _with_suffix(MAIN_STEM, dialect, closed)


def is_issue_file(path: Path) -> bool:
    return bool(_ISSUE_FILE_RE.search(path.name))


def entry_number(name: str) -> int | None:
    """Issue number encoded in a file or directory name."""
    match = _ENTRY_RE.match(name)
    return int(match["number"]) if match else None


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def project_dir(issues_dir: Path, owner: str, repo: str) -> Path:
    return issues_dir / owner / repo


def ancestors_dir(
    issues_dir: Path, owner: str, repo: str, ancestors: list[FetchedIssue]
) -> Path:
    path = project_dir(issues_dir, owner, repo)
    for ancestor in ancestors:
        path = path / issue_stem(ancestor.number, ancestor.title)
    return path


def issue_file_path(
    issues_dir: Path,
    owner: str,
    repo: str,
    issue: Issue,
    ancestors: list[FetchedIssue],
    dialect: Dialect,
) -> Path:
    """Canonical path of the file holding *issue*."""
    parent = ancestors_dir(issues_dir, owner, repo, ancestors)
    closed = issue.close_state.is_closed
    if issue.has_children():
        return (
            parent
            / issue_stem(issue.number, issue.title)
            / main_filename(dialect, closed)
        )
    return parent / issue_filename(issue.number, issue.title, dialect, closed)


def fetched(issue: Issue, owner: str, repo: str) -> FetchedIssue:
    """Ancestry element for an issue with a number."""
    if issue.number is None:
        raise ValueError(f"Issue '{issue.title}' has no number yet")
    return FetchedIssue(
        owner=owner, repo=repo, number=issue.number, title=issue.title
    )


def extract_owner_repo_from_path(
    issues_dir: Path, path: Path
) -> tuple[str, str]:
    """Owner and repo of an issue file below *issues_dir*.

    Raises:
        StorageError: If *path* is not inside the issues directory.
    """
    try:
        parts = path.resolve().relative_to(issues_dir.resolve()).parts
    except ValueError:
        raise StorageError(
            f"Issue file is not in issues directory: {path}"
        ) from None
    if len(parts) < 3:
        raise StorageError(f"Could not extract owner/repo from path: {path}")
    return parts[0], parts[1]


def ancestors_from_path(issues_dir: Path, path: Path) -> list[FetchedIssue]:
    """Rebuild the ancestry chain (root first) from directory names.

    Titles come back sanitised, which is enough to rebuild paths.
    """
    owner, repo = extract_owner_repo_from_path(issues_dir, path)
    rel = path.resolve().relative_to(issues_dir.resolve())
    dirs = list(rel.parts[2:-1])
    if path.name.startswith(MAIN_STEM + ".") and dirs:
        dirs = dirs[:-1]
    chain = []
    for name in dirs:
        match = _ENTRY_RE.match(name)
        if match is None or match["ext"]:
            raise StorageError(
                f"Directory '{name}' in {path} is not an issue directory"
            )
        chain.append(
            FetchedIssue(
                owner=owner,
                repo=repo,
                number=int(match["number"]),
                title=(match["title"] or "").replace("_", " "),
            )
        )
    return chain


def find_issue_file(project: Path, number: int) -> Path | None:
    """Locate the file of issue *number* anywhere under a project dir."""
    if not project.is_dir():
        return None
    candidates = []
    for path in project.rglob("*"):
        if not path.is_file() or not is_issue_file(path):
            continue
        if path.name.startswith(MAIN_STEM + "."):
            owner_number = entry_number(path.parent.name)
        else:
            owner_number = entry_number(path.name)
        if owner_number == number:
            candidates.append(path)
    if not candidates:
        return None
    # Prefer open (non-.bak) files, then the shallowest one.
    candidates.sort(
        key=lambda p: (p.name.endswith(BAK_SUFFIX), len(p.parts), str(p))
    )
    return candidates[0]


def search_issue_files(issues_dir: Path, pattern: str = "") -> list[Path]:
    """Issue files whose name or path contains *pattern*, newest first."""
    if not issues_dir.is_dir():
        return []
    needle = pattern.lower()
    matches = [
        path
        for path in issues_dir.rglob("*")
        if path.is_file()
        and is_issue_file(path)
        and (not needle or needle in str(path).lower())
    ]
    matches.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    return matches


# ---------------------------------------------------------------------------
# Storing
# ---------------------------------------------------------------------------


class PlannedFile(NamedTuple):
    """One file of a stored tree.

    Attributes:
        path: Destination path.
        issue: The node whose subtree the file holds.
        ancestors: Ancestry chain of the node, root first.
        tree_path: Child indices of the node from the stored root.
    """

    path: Path
    issue: Issue
    ancestors: tuple[FetchedIssue, ...]
    tree_path: tuple[int, ...]


@dataclass
class StoreResult:
    """What ``store_tree`` did on disk."""

    files: list[PlannedFile] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)
    protected: list[Path] = field(default_factory=list)

    def path_of(self, tree_path: tuple[int, ...] = ()) -> Path:
        for planned in self.files:
            if planned.tree_path == tree_path:
                return planned.path
        raise KeyError(tree_path)

    @property
    def touched(self) -> list[Path]:
        return self.written + self.removed


def plan_tree(
    issues_dir: Path,
    owner: str,
    repo: str,
    root: Issue,
    ancestors: list[FetchedIssue],
    dialect: Dialect,
) -> list[PlannedFile]:
    """Compute the file of every node of *root*, in pre-order.

    Sub-issues of a pending issue get no file of their own; they only
    live inside the pending issue's file until it is created remotely.
    """
    planned: list[PlannedFile] = []

    def _visit(
        issue: Issue,
        chain: tuple[FetchedIssue, ...],
        tree_path: tuple[int, ...],
    ) -> None:
        path = issue_file_path(
            issues_dir, owner, repo, issue, list(chain), dialect
        )
        planned.append(PlannedFile(path, issue, chain, tree_path))
        if issue.is_pending:
            return
        child_chain = chain + (fetched(issue, owner, repo),)
        for index, child in enumerate(issue.children):
            _visit(child, child_chain, tree_path + (index,))

    _visit(root, tuple(ancestors), ())
    return planned


def _stale_entries(planned: PlannedFile) -> list[Path]:
    """Entries in the node's parent directory that are older forms of it."""
    number = planned.issue.number
    stale: list[Path] = []
    parent = planned.path.parent
    if planned.issue.has_children():
        node_dir, parent = parent, parent.parent
        for sibling in node_dir.iterdir():
            if (
                sibling.is_file()
                and sibling.name.startswith(MAIN_STEM + ".")
                and sibling != planned.path
            ):
                stale.append(sibling)
        keep = node_dir
    else:
        keep = planned.path
    if number is None or not parent.is_dir():
        return stale
    for entry in parent.iterdir():
        if entry == keep or entry_number(entry.name) != number:
            continue
        if entry.is_dir() or is_issue_file(entry):
            stale.append(entry)
    return stale


def _orphaned_children(
    planned: PlannedFile, expected: set[Path]
) -> list[Path]:
    """Entries in a node directory that belong to no current sub-issue."""
    if not planned.issue.has_children():
        return []
    node_dir = planned.path.parent
    orphans = []
    for entry in node_dir.iterdir():
        if entry.name.startswith(MAIN_STEM + ".") or entry in expected:
            continue
        if entry.is_dir() and entry_number(entry.name) is not None:
            orphans.append(entry)
        elif entry.is_file() and is_issue_file(entry):
            orphans.append(entry)
    return orphans


def store_tree(
    issues_dir: Path,
    owner: str,
    repo: str,
    root: Issue,
    ancestors: list[FetchedIssue],
    dialect: Dialect,
    render_closed: bool = False,
    protect: Callable[[Path], bool] | None = None,
    fold_hint: bool = False,
) -> StoreResult:
    """Write every node file of *root*, then remove stale forms.

    Args:
        issues_dir: ``{data_root}/issues``.
        owner: Repository owner.
        repo: Repository name.
        root: Tree to store; every node except pending ones has a number.
        ancestors: Ancestry chain of *root*, root first.
        dialect: Dialect of the written files.
        render_closed: Unfold closed sub-issues in the written text.
        protect: Returns ``True`` for existing paths that must be neither
            overwritten nor deleted.
        fold_hint: Use the fold marker that names the unfold flag.

    Returns:
        The planned files and the paths written, removed and protected.

    Raises:
        StorageError: If a node is folded, or a write or delete fails.
    """
    result = StoreResult(
        files=plan_tree(issues_dir, owner, repo, root, ancestors, dialect)
    )
    for planned in result.files:
        if planned.issue.folded:
            raise StorageError(
                f"Cannot write {planned.path}: the content of "
                f"{planned.issue.display_id()} is folded and not loaded"
            )

    def _protected(path: Path) -> bool:
        return path.exists() and protect is not None and protect(path)

    for planned in result.files:
        if _protected(planned.path):
            logger.warning(
                "Not overwriting %s: it has local edits that are not synced",
                planned.path,
            )
            result.protected.append(planned.path)
            continue
        text = serialize(
            planned.issue, dialect, render_closed, fold_hint=fold_hint
        )
        write_file_atomic(planned.path, text)
        result.written.append(planned.path)

    expected_entries: set[Path] = set()
    for planned in result.files:
        if planned.tree_path and planned.issue.has_children():
            expected_entries.add(planned.path.parent)
        expected_entries.add(planned.path)

    doomed: list[Path] = []
    for planned in result.files:
        doomed.extend(_stale_entries(planned))
        doomed.extend(_orphaned_children(planned, expected_entries))

    for path in dict.fromkeys(doomed):
        if not path.exists():
            continue
        if (path.is_file() and _protected(path)) or (
            path.is_dir()
            and any(_protected(p) for p in path.rglob("*") if p.is_file())
        ):
            logger.warning(
                "Keeping stale %s: it holds local edits that are not synced",
                path,
            )
            result.protected.append(path)
            continue
        logger.info("Removing stale issue entry %s", path)
        remove_path(path)
        result.removed.append(path)
    return result
