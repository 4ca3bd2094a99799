"""Recursive fetch of issue trees and their storage on disk.

``fetch_and_store`` is the entry point: it walks up from the requested
issue to its root with repeated parent lookups, fetches the root's whole
subtree and stores it through the placement strategy, so that siblings and
ancestors stay consistent on disk.

Key design choices:

* **Explicit ancestry** -- the chain of parents is built bottom-up and
  reversed into a root-first list of ``FetchedIssue``; the tree itself only
  holds parent-to-child references.
* **Concurrent per node** -- the issue, its comments and its sub-issue
  list are three independent requests issued together; siblings are
  fetched concurrently as well, bounded by the request semaphore.
* **Partial-failure tolerant** -- a sub-issue that fails to fetch is
  logged and kept as its parent listed it; only a root failure aborts.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .codec import Dialect, split_blockers
from .core.async_utils import gather_limited, run_sync_limited
from .core.remote import RemoteClient, RemoteComment, RemoteIssue, RemoteSnapshot
from .errors import RemoteError
from .models import (
    Comment,
    FetchedIssue,
    Issue,
    issue_url,
    node_at,
    parse_issue_url,
    walk,
)
from .placement import StoreResult, store_tree

logger = logging.getLogger(__name__)

_CHECKBOX_TITLE_RE = re.compile(r"^\s*- \[[ xX]\]\s+(?P<title>.+?)\s*$")


# ---------------------------------------------------------------------------
# Remote -> model conversion
# ---------------------------------------------------------------------------


def normalize_remote_text(text: str | None) -> str:
    """Bring remote text into the shape the parser produces.

    Converts CRLF, strips trailing whitespace per line and drops leading and
    trailing blank lines.
    """
    if not text:
        return ""
    lines = [line.rstrip() for line in text.replace("\r\n", "\n").split("\n")]
    while lines and not lines[-1]:
        lines.pop()
    while lines and not lines[0]:
        lines.pop(0)
    return "\n".join(lines)


def _drop_sub_issue_checklist(body: str, titles: set[str]) -> str:
    """Remove checklist lines that merely mirror the sub-issue list."""
    if not titles:
        return body
    kept = []
    for line in body.split("\n"):
        match = _CHECKBOX_TITLE_RE.match(line)
        if match and match["title"] in titles:
            continue
        kept.append(line)
    return normalize_remote_text("\n".join(kept))


def _owned(author: str | None, current_user: str | None) -> bool:
    return current_user is None or author is None or author == current_user


def _ref(remote: RemoteIssue, owner: str, repo: str) -> tuple[str, str]:
    """Owner/repo of a listed issue; sub-issues may live in other repos."""
    if remote.html_url:
        ref = parse_issue_url(remote.html_url)
        if ref.owner and ref.repo:
            return ref.owner, ref.repo
    return owner, repo


def comment_from_remote(
    comment: RemoteComment, current_user: str | None
) -> Comment:
    return Comment(
        id=comment.id,
        body=normalize_remote_text(comment.body),
        author=comment.author,
        owned=_owned(comment.author, current_user),
    )


def issue_from_remote(
    remote: RemoteIssue,
    owner: str,
    repo: str,
    current_user: str | None,
    comments: tuple[Comment, ...] = (),
    children: tuple[Issue, ...] = (),
) -> Issue:
    """Build a model node from a remote payload.

    The blockers section is split off the end of the body.
    """
    body, blockers = split_blockers(normalize_remote_text(remote.body))
    body = _drop_sub_issue_checklist(
        normalize_remote_text(body), {child.title for child in children}
    )
    return Issue(
        title=remote.title.strip(),
        url=issue_url(owner, repo, remote.number),
        close_state=remote.close_state,
        labels=remote.label_names,
        owned=_owned(remote.author, current_user),
        author=remote.author,
        body=body,
        comments=comments,
        blockers=blockers,
        children=children,
    )


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


async def fetch_snapshot(
    client: RemoteClient, owner: str, repo: str, number: int
) -> RemoteSnapshot:
    """Fetch issue, comments and sub-issue list concurrently."""
    issue, comments, sub_issues = await gather_limited(
        [
            run_sync_limited(client.fetch_issue, owner, repo, number),
            run_sync_limited(client.fetch_comments, owner, repo, number),
            run_sync_limited(client.fetch_sub_issues, owner, repo, number),
        ]
    )
    return RemoteSnapshot(
        issue=issue, comments=tuple(comments), sub_issues=tuple(sub_issues)
    )


async def fetch_issue_tree(
    client: RemoteClient,
    owner: str,
    repo: str,
    number: int,
    current_user: str | None = None,
) -> Issue:
    """Fetch an issue and all of its descendants.

    Raises:
        RemoteError: If the issue itself cannot be fetched.
    """
    snapshot = await fetch_snapshot(client, owner, repo, number)
    children = await asyncio.gather(
        *[
            _fetch_child(client, sub, owner, repo, current_user)
            for sub in snapshot.sub_issues
        ]
    )
    comments = tuple(
        comment_from_remote(c, current_user) for c in snapshot.comments
    )
    return issue_from_remote(
        snapshot.issue, owner, repo, current_user, comments, tuple(children)
    )


async def _fetch_child(
    client: RemoteClient,
    listed: RemoteIssue,
    owner: str,
    repo: str,
    current_user: str | None,
) -> Issue:
    child_owner, child_repo = _ref(listed, owner, repo)
    try:
        return await fetch_issue_tree(
            client, child_owner, child_repo, listed.number, current_user
        )
    except RemoteError as exc:
        logger.warning(
            "Could not fetch sub-issue %s/%s#%d, keeping the listed summary: %s",
            child_owner,
            child_repo,
            listed.number,
            exc,
        )
        return issue_from_remote(listed, child_owner, child_repo, current_user)


async def find_ancestry_chain(
    client: RemoteClient, owner: str, repo: str, number: int
) -> list[FetchedIssue]:
    """Ancestors of an issue, root first (empty for a root issue).

    Raises:
        RemoteError: If a parent lookup fails or the chain loops.
    """
    chain: list[FetchedIssue] = []
    seen = {number}
    current = number
    while True:
        parent = await run_sync_limited(
            client.fetch_parent_issue, owner, repo, current
        )
        if parent is None:
            break
        if parent.number in seen:
            raise RemoteError(
                f"Sub-issue cycle detected at {owner}/{repo}#{parent.number}"
            )
        seen.add(parent.number)
        chain.append(
            FetchedIssue(
                owner=owner,
                repo=repo,
                number=parent.number,
                title=parent.title,
            )
        )
        current = parent.number
    chain.reverse()
    return chain


async def resolve_current_user(client: RemoteClient) -> str | None:
    """Login of the authenticated user; ``None`` when it cannot be resolved."""
    try:
        return await run_sync_limited(client.fetch_authenticated_user)
    except RemoteError as exc:
        logger.warning(
            "Could not resolve the authenticated user, treating all "
            "content as editable: %s",
            exc,
        )
        return None


# ---------------------------------------------------------------------------
# Fetch + store
# ---------------------------------------------------------------------------


@dataclass
class FetchOutcome:
    """Result of ``fetch_and_store``.

    Attributes:
        path: File of the requested issue.
        root: The stored root tree.
        node_path: Child indices of the requested issue inside ``root``.
        ancestors: Ancestry chain of the requested issue, root first.
        store: What was written and removed.
    """

    path: Path
    root: Issue
    node_path: tuple[int, ...]
    ancestors: list[FetchedIssue]
    store: StoreResult


def locate(root: Issue, number: int) -> tuple[int, ...] | None:
    for node in walk(root):
        if node.issue.number == number:
            return node.path
    return None


@dataclass
class FetchedTree:
    """A whole tree fetched for one of its issues.

    Attributes:
        root: The root of the tree.
        node_path: Child indices of the requested issue inside ``root``.
        ancestors: Ancestry chain of the requested issue, root first.
    """

    root: Issue
    node_path: tuple[int, ...]
    ancestors: list[FetchedIssue]

    @property
    def node(self) -> Issue:
        return node_at(self.root, self.node_path)


async def fetch_tree(
    client: RemoteClient,
    owner: str,
    repo: str,
    number: int,
    current_user: str | None = None,
) -> FetchedTree:
    """Fetch the whole tree an issue belongs to.

    Raises:
        RemoteError: If the root (or the requested issue) cannot be fetched.
    """
    chain = await find_ancestry_chain(client, owner, repo, number)
    root_number = chain[0].number if chain else number
    logger.info(
        "Fetching %s/%s#%d (root #%d)", owner, repo, number, root_number
    )
    root = await fetch_issue_tree(
        client, owner, repo, root_number, current_user
    )
    node_path = locate(root, number)
    if node_path is None:
        raise RemoteError(
            f"{owner}/{repo}#{number} is not listed under its root "
            f"#{root_number}"
        )
    return FetchedTree(root=root, node_path=node_path, ancestors=chain)


async def fetch_and_store(
    client: RemoteClient,
    issues_dir: Path,
    owner: str,
    repo: str,
    number: int,
    dialect: Dialect,
    current_user: str | None = None,
    render_closed: bool = False,
    protect: Callable[[Path], bool] | None = None,
    fold_hint: bool = False,
) -> FetchOutcome:
    """Fetch the tree containing an issue and store it from its root.

    Raises:
        RemoteError: If the root (or the requested issue) cannot be fetched.
        StorageError: If writing fails.
    """
    fetched_tree = await fetch_tree(client, owner, repo, number, current_user)
    store = store_tree(
        issues_dir,
        owner,
        repo,
        fetched_tree.root,
        [],
        dialect,
        render_closed=render_closed,
        protect=protect,
        fold_hint=fold_hint,
    )
    return FetchOutcome(
        path=store.path_of(fetched_tree.node_path),
        root=fetched_tree.root,
        node_path=fetched_tree.node_path,
        ancestors=fetched_tree.ancestors,
        store=store,
    )
