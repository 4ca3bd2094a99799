"""Push of a merged issue tree to the remote.

``push_tree`` makes the remote match a merged tree, in a fixed order:

1. validate every Duplicate target (nothing is written if one is missing);
2. create pending issues level by level, linking each to its parent;
3. create pending comments one at a time, in document order;
4. update titles, labels, bodies and states, then owned comments;
5. delete removed owned comments and unlink removed sub-issues.

The returned tree carries the identities the remote assigned, plus the
positions of issues that were closed as duplicates so the caller can drop
them locally.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from ..codec import join_blockers
from ..core.async_utils import run_sync_limited
from ..core.remote import RemoteClient
from ..errors import ReferenceNotFoundError, RemoteNotFoundError
from ..models import (
    CloseKind,
    Issue,
    issue_url,
    node_at,
    normalize_text,
    replace_at,
    walk,
)

logger = logging.getLogger(__name__)


@dataclass
class PushResult:
    """Outcome of ``push_tree``.

    Attributes:
        issue: The pushed tree with assigned urls and comment ids.
        operations: Human-readable log of the remote writes, in order.
        duplicates: Tree paths of issues closed as duplicates.
    """

    issue: Issue
    operations: list[str] = field(default_factory=list)
    duplicates: list[tuple[int, ...]] = field(default_factory=list)


def remote_body(issue: Issue) -> str:
    """Body text as stored remotely: description plus blockers section."""
    return join_blockers(issue.body, issue.blockers)


class _Pusher:
    def __init__(self, client: RemoteClient, owner: str, repo: str) -> None:
        self.client = client
        self.owner = owner
        self.repo = repo
        self.operations: list[str] = []

    def _where(self, issue: Issue) -> tuple[str, str]:
        return issue.owner or self.owner, issue.repo or self.repo

    def _log(self, text: str) -> None:
        logger.info("Remote: %s", text)
        self.operations.append(text)

    # ------------------------------------------------------------------
    # 1. Duplicate targets
    # ------------------------------------------------------------------

    async def validate_duplicates(
        self, tree: Issue, remote_numbers: dict[int, Issue]
    ) -> None:
        for node in walk(tree):
            state = node.issue.close_state
            if state.kind != CloseKind.DUPLICATE:
                continue
            remote = remote_numbers.get(node.issue.number)
            if remote is not None and remote.close_state == state:
                continue
            owner, repo = self._where(node.issue)
            try:
                await run_sync_limited(
                    self.client.fetch_issue, owner, repo, state.duplicate_of
                )
            except RemoteNotFoundError:
                raise ReferenceNotFoundError(
                    owner, repo, state.duplicate_of, "Duplicate target"
                ) from None

    # ------------------------------------------------------------------
    # 2. Pending issues
    # ------------------------------------------------------------------

    async def create_pending(
        self, tree: Issue, parent_number: int | None
    ) -> tuple[Issue, set[int]]:
        created: set[int] = set()
        queue: deque[tuple[int, ...]] = deque([()])
        while queue:
            path = queue.popleft()
            node = node_at(tree, path)
            if node.is_pending:
                parent = node_at(tree, path[:-1]) if path else None
                owner, repo = (
                    self._where(parent) if parent else (self.owner, self.repo)
                )
                remote = await run_sync_limited(
                    self.client.create_issue,
                    owner,
                    repo,
                    node.title.strip(),
                    remote_body(node),
                    node.labels,
                )
                self._log(f"created {owner}/{repo}#{remote.number}")
                if node.close_state.is_closed:
                    await run_sync_limited(
                        self.client.update_issue_state,
                        owner,
                        repo,
                        remote.number,
                        node.close_state,
                    )
                link_to = parent.number if parent else parent_number
                if link_to is not None:
                    await run_sync_limited(
                        self.client.add_sub_issue,
                        owner,
                        repo,
                        link_to,
                        remote.number,
                    )
                    self._log(f"linked #{remote.number} under #{link_to}")
                node = node.model_copy(
                    update={
                        "url": issue_url(owner, repo, remote.number),
                        "author": remote.author,
                        "owned": True,
                    }
                )
                tree = replace_at(tree, path, node)
                created.add(remote.number)
            for index in range(len(node.children)):
                queue.append(path + (index,))
        return tree, created

    # ------------------------------------------------------------------
    # 3. Pending comments
    # ------------------------------------------------------------------

    async def create_comments(self, tree: Issue) -> Issue:
        for node in list(walk(tree)):
            issue = node_at(tree, node.path)
            if not any(c.is_pending for c in issue.comments):
                continue
            owner, repo = self._where(issue)
            comments = []
            for comment in issue.comments:
                if not comment.is_pending:
                    comments.append(comment)
                    continue
                if not normalize_text(comment.body):
                    logger.info(
                        "Dropping empty new comment on %s",
                        issue.display_id(),
                    )
                    continue
                remote = await run_sync_limited(
                    self.client.create_comment,
                    owner,
                    repo,
                    issue.number,
                    comment.body,
                )
                self._log(f"commented on #{issue.number} ({remote.id})")
                comments.append(
                    comment.model_copy(
                        update={
                            "id": remote.id,
                            "author": remote.author,
                            "owned": True,
                        }
                    )
                )
            tree = replace_at(
                tree,
                node.path,
                issue.model_copy(update={"comments": tuple(comments)}),
            )
        return tree

    # ------------------------------------------------------------------
    # 4./5. Updates, deletions and links
    # ------------------------------------------------------------------

    async def update_fields(self, local: Issue, remote: Issue) -> None:
        owner, repo = self._where(local)
        number = local.number
        if local.title.strip() != remote.title.strip():
            await run_sync_limited(
                self.client.update_issue_title,
                owner,
                repo,
                number,
                local.title.strip(),
            )
            self._log(f"retitled #{number}")
        if sorted(local.labels) != sorted(remote.labels):
            await run_sync_limited(
                self.client.update_issue_labels,
                owner,
                repo,
                number,
                local.labels,
            )
            self._log(f"relabelled #{number}")
        if not local.folded and (
            normalize_text(local.body) != normalize_text(remote.body)
            or local.blockers != remote.blockers
        ):
            if remote.owned:
                await run_sync_limited(
                    self.client.update_issue_body,
                    owner,
                    repo,
                    number,
                    remote_body(local),
                )
                self._log(f"updated body of #{number}")
            else:
                logger.warning(
                    "Not updating body of %s: it belongs to %s",
                    local.display_id(),
                    remote.author,
                )
        if local.close_state != remote.close_state:
            await run_sync_limited(
                self.client.update_issue_state,
                owner,
                repo,
                number,
                local.close_state,
            )
            self._log(
                f"set #{number} to [{local.close_state.to_checkbox()}]"
            )

    async def update_comments(self, local: Issue, remote: Issue) -> None:
        if local.folded:
            return
        owner, repo = self._where(local)
        remote_by_id = {c.id: c for c in remote.comments}
        for comment in local.comments:
            theirs = remote_by_id.get(comment.id)
            if theirs is None:
                if comment.id is not None:
                    logger.warning(
                        "Comment %s is not on %s; leaving it alone",
                        comment.id,
                        local.display_id(),
                    )
                continue
            if normalize_text(comment.body) == normalize_text(theirs.body):
                continue
            if not theirs.owned:
                logger.warning(
                    "Not updating comment %s: it belongs to %s",
                    comment.id,
                    theirs.author,
                )
                continue
            await run_sync_limited(
                self.client.update_comment, owner, repo, comment.id, comment.body
            )
            self._log(f"updated comment {comment.id}")

    async def delete_comments(self, local: Issue, remote: Issue) -> None:
        if local.folded:
            return
        owner, repo = self._where(local)
        kept = {c.id for c in local.comments}
        for comment in remote.comments:
            if comment.id in kept:
                continue
            if not comment.owned:
                logger.warning(
                    "Not deleting comment %s: it belongs to %s",
                    comment.id,
                    comment.author,
                )
                continue
            await run_sync_limited(
                self.client.delete_comment, owner, repo, comment.id
            )
            self._log(f"deleted comment {comment.id}")

    async def link_children(
        self, local: Issue, remote: Issue, created: set[int]
    ) -> None:
        if local.folded:
            return
        owner, repo = self._where(local)
        linked = {c.number for c in remote.children} | created
        for child in local.children:
            if child.number is not None and child.number not in linked:
                await run_sync_limited(
                    self.client.add_sub_issue,
                    owner,
                    repo,
                    local.number,
                    child.number,
                )
                self._log(f"linked #{child.number} under #{local.number}")

    async def unlink_children(self, local: Issue, remote: Issue) -> None:
        if local.folded:
            return
        owner, repo = self._where(local)
        kept = {c.number for c in local.children}
        for child in remote.children:
            if child.number not in kept:
                await run_sync_limited(
                    self.client.remove_sub_issue,
                    owner,
                    repo,
                    local.number,
                    child.number,
                )
                self._log(
                    f"unlinked #{child.number} from #{local.number}"
                )


async def push_tree(
    client: RemoteClient,
    owner: str,
    repo: str,
    merged: Issue,
    remote: Issue | None,
    parent_number: int | None = None,
) -> PushResult:
    """Make the remote match *merged*.

    Args:
        client: Remote client.
        owner: Owner used for pending issues without a numbered parent.
        repo: Repository used for pending issues without a numbered parent.
        merged: The tree to push.
        remote: The remote tree *merged* was computed against, or ``None``
            when *merged* is a new root.
        parent_number: Parent to link a pending root under.

    Raises:
        ReferenceNotFoundError: If a Duplicate target does not exist; no
            remote write has happened at that point.
        RemoteError: If a remote call fails.
    """
    pusher = _Pusher(client, owner, repo)
    remote_numbers = (
        {node.issue.number: node.issue for node in walk(remote)}
        if remote is not None
        else {}
    )

    await pusher.validate_duplicates(merged, remote_numbers)
    tree, created = await pusher.create_pending(merged, parent_number)
    tree = await pusher.create_comments(tree)

    pairs = [
        (node.issue, remote_numbers[node.issue.number])
        for node in walk(tree)
        if node.issue.number not in created
        and node.issue.number in remote_numbers
    ]
    for local, theirs in pairs:
        await pusher.update_fields(local, theirs)
        await pusher.link_children(local, theirs, created)
    for local, theirs in pairs:
        await pusher.update_comments(local, theirs)
    for local, theirs in pairs:
        await pusher.delete_comments(local, theirs)
        await pusher.unlink_children(local, theirs)

    duplicates = [
        node.path
        for node in walk(tree)
        if node.issue.close_state.kind == CloseKind.DUPLICATE
    ]
    return PushResult(
        issue=tree, operations=pusher.operations, duplicates=duplicates
    )


def prune_duplicates(
    tree: Issue, duplicates: list[tuple[int, ...]]
) -> Issue | None:
    """Drop duplicate-closed nodes; ``None`` when the root itself is one."""
    if () in duplicates:
        return None
    for path in sorted(duplicates, reverse=True):
        parent_path, index = path[:-1], path[-1]
        parent = node_at(tree, parent_path)
        children = parent.children[:index] + parent.children[index + 1 :]
        tree = replace_at(
            tree, parent_path, parent.model_copy(update={"children": children})
        )
    return tree
