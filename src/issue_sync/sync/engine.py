"""Sync engine: orchestrates ``open``, ``fetch``, ``touch`` and ``status``.

One sync of an issue file runs these steps:

1. Check the conflict gate (every command does this first).
2. Parse the local file, if there is one.
3. Fetch the whole remote tree the issue belongs to (skipped offline).
4. Load the consensus: the file's last committed version.
5. Merge local, consensus and remote according to the merge mode.
6. Push remote-bound changes (pending issues and comments, edits).
7. Drop issues closed as duplicates.
8. Store the root tree through the placement strategy.
9. Commit exactly the written and removed paths as the new consensus.

``open`` runs a sync with the requested merge mode, hands the file to the
editor and runs a second sync in Normal mode.  A Normal-mode conflict
commits the remote rendering as consensus, writes conflict markers into
the file, records the conflict and raises ``ConflictError``.

Virtual projects run the same pipeline without a remote: pending issues
get locally allocated numbers instead of being created remotely.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, NoReturn

from ..codec import Dialect, ParseContext, parse, serialize
from ..context import AppContext
from ..core.async_utils import run_sync, run_sync_limited
from ..core.remote import RemoteClient
from ..errors import (
    ConflictError,
    ParseError,
    ReferenceNotFoundError,
    RemoteNotFoundError,
    StorageError,
)
from ..fetch import fetch_and_store, fetch_tree, locate, resolve_current_user
from ..file_handler import read_text, remove_path, write_file_atomic
from ..meta import (
    allocate_virtual_issue_number,
    ensure_virtual_project,
    is_virtual_project,
)
from ..models import (
    CloseKind,
    ConflictState,
    FetchedIssue,
    Issue,
    issue_url,
    node_at,
    parse_issue_url,
    replace_at,
    walk,
)
from ..placement import (
    StoreResult,
    ancestors_from_path,
    entry_number,
    extract_owner_repo_from_path,
    find_issue_file,
    issue_file_path,
    issue_filename,
    project_dir,
    search_issue_files,
    store_tree,
)
from .history import ConsensusHistory
from .merger import merge_issue, render_conflict_markers
from .models import MergeMode, MergeResult, SyncReport
from .push import prune_duplicates, push_tree

logger = logging.getLogger(__name__)

_SHORT_REF_RE = re.compile(
    r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)(?:#|/)(?P<number>\d+)$"
)


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass
class Target:
    """What a command operates on: an issue number, a file, or both."""

    owner: str
    repo: str
    number: int | None = None
    path: Path | None = None

    def describe(self) -> str:
        if self.number is not None:
            return f"{self.owner}/{self.repo}#{self.number}"
        return str(self.path)


def resolve_target(issues_dir: Path, spec: str) -> Target:
    """Interpret a command-line issue reference.

    Accepts an issue file path, an issue URL, ``owner/repo#N`` or
    ``owner/repo/N``.

    Raises:
        ValueError: If *spec* matches none of these forms.
        StorageError: If *spec* is a file outside the issues directory.
    """
    path = Path(spec).expanduser()
    if path.is_file():
        owner, repo = extract_owner_repo_from_path(issues_dir, path)
        return Target(owner, repo, path=path.resolve())
    match = _SHORT_REF_RE.match(spec)
    if match:
        return Target(match["owner"], match["repo"], int(match["number"]))
    ref = parse_issue_url(spec)
    if ref.owner and ref.repo and ref.number is not None:
        return Target(ref.owner, ref.repo, ref.number)
    raise ValueError(
        f"Cannot resolve '{spec}': expected an issue file, an issue URL "
        "or owner/repo#N"
    )


@dataclass
class _Settled:
    store: StoreResult | None
    path: Path | None
    removed: list[Path]
    committed: bool


def _find_by_titles(issue: Issue, titles: list[str]) -> Issue | None:
    """Descendant reached by following child titles, last match wins."""
    node: Issue | None = issue
    for title in titles:
        if node is None:
            return None
        matches = [c for c in node.children if c.title.strip() == title]
        node = matches[-1] if matches else None
    return node


def _unrecorded_conflict(
    issues_dir: Path, path: Path | None, result: MergeResult
) -> ConflictError:
    """Conflict that cannot be written as markers for lack of history.

    Without a git repository a resolved file would conflict again on the
    next sync, so the local file is left exactly as it is.
    """
    units = [conflict.unit for conflict in result.conflicts]
    return ConflictError(
        f"{len(units)} unit(s) differ between {path} and the remote with no "
        f"recorded consensus: {', '.join(units)}. Local file left unchanged. "
        f"Run 'git init' in {issues_dir} or sync with --force/--reset.",
        units=units,
        path=path,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SyncEngine:
    """Run sync commands against one data root.

    Args:
        context: Runtime context (configuration and clock).
        client: Remote client; ``None`` restricts the engine to offline
            and virtual-project work.
        history: Consensus history; defaults to git at the issues dir.
    """

    def __init__(
        self,
        context: AppContext,
        client: RemoteClient | None = None,
        history: ConsensusHistory | None = None,
    ) -> None:
        self.context = context
        self.config = context.config
        self.client = client
        self.issues_dir = self.config.issues_dir
        self.history = history or ConsensusHistory(self.issues_dir)
        self.tracker = context.conflict_tracker()
        self._current_user: str | None = None
        self._user_resolved = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _dialect(self, path: Path | None) -> Dialect:
        if path is not None:
            return Dialect.from_path(path)
        return self.context.dialect

    def _parse_file(self, path: Path) -> Issue:
        text = read_text(path)
        return parse(text, ParseContext(text, str(path)), Dialect.from_path(path))

    def _consensus(self, path: Path | None) -> tuple[Issue | None, str | None]:
        if path is None:
            return None, None
        text = self.history.read(path)
        if text is None:
            return None, None
        try:
            issue = parse(
                text,
                ParseContext(text, f"HEAD:{path.name}"),
                Dialect.from_path(path),
            )
        except ParseError as exc:
            logger.warning(
                "Committed version of %s does not parse, syncing without "
                "consensus: %s",
                path,
                exc,
            )
            return None, text
        return issue, text

    def _protect(self, keep: Path | None) -> Callable[[Path], bool] | None:
        """Veto for files with uncommitted edits, except *keep*."""
        if not self.history.available:
            return None
        kept = keep.resolve() if keep is not None else None

        def _dirty(path: Path) -> bool:
            return path.resolve() != kept and self.history.is_dirty(path)

        return _dirty

    def _store(
        self,
        owner: str,
        repo: str,
        root: Issue,
        ancestors: list[FetchedIssue],
        dialect: Dialect,
        keep: Path | None,
    ) -> StoreResult:
        return store_tree(
            self.issues_dir,
            owner,
            repo,
            root,
            ancestors,
            dialect,
            render_closed=self.config.render_closed,
            protect=self._protect(keep),
            fold_hint=self.context.fold_hint,
        )

    def _drop_old_path(self, path: Path | None, store: StoreResult) -> list[Path]:
        """Remove the opened file if the tree now lives elsewhere."""
        if path is None or not path.exists():
            return []
        if any(path.resolve() == p.resolve() for p in store.written):
            return []
        logger.info("Removing superseded file %s", path)
        remove_path(path)
        return [path]

    def _require_client(self) -> RemoteClient:
        if self.client is None:
            raise StorageError("No remote client configured for this command")
        return self.client

    async def _user(self) -> str | None:
        if not self._user_resolved:
            self._current_user = await resolve_current_user(
                self._require_client()
            )
            self._user_resolved = True
        return self._current_user

    def _report(
        self,
        target: Target,
        number: int | None,
        path: Path | None,
        mode: MergeMode,
        store: StoreResult | None = None,
        extra_removed: list[Path] | None = None,
        result: MergeResult | None = None,
        pushed: list[str] | None = None,
        committed: bool = False,
        offline: bool = False,
    ) -> SyncReport:
        removed = list(store.removed) if store else []
        removed += extra_removed or []
        display = (
            f"{target.owner}/{target.repo}#{number}"
            if number is not None
            else target.describe()
        )
        return SyncReport(
            target=display,
            number=number,
            path=str(path) if path is not None else None,
            mode=str(mode),
            offline=offline,
            pulled=[o.unit for o in result.remote_changes] if result else [],
            pushed=pushed or [],
            removed=[str(p) for p in removed],
            protected=[str(p) for p in store.protected] if store else [],
            committed=committed,
        )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync(
        self,
        target: Target,
        mode: MergeMode | None = None,
        offline: bool = False,
    ) -> SyncReport:
        """Bring one issue file and its remote in line.

        Raises:
            ConflictBlockedError: If an earlier conflict is unresolved.
            ConflictError: If local and remote changed the same unit.
            ReferenceNotFoundError: If a Duplicate target does not exist.
            ParseError: If the local file is malformed.
            RemoteError: If the remote cannot be reached.
            StorageError: If files or history cannot be written.
        """
        mode = mode or MergeMode.normal()
        self.tracker.check_all()
        owner, repo = target.owner, target.repo
        project = project_dir(self.issues_dir, owner, repo)

        path = target.path
        if path is None and target.number is not None:
            path = find_issue_file(project, target.number)
        local = (
            self._parse_file(path)
            if path is not None and path.is_file()
            else None
        )

        if is_virtual_project(project, owner, repo):
            if local is None or path is None:
                raise StorageError(
                    f"No local file for {target.describe()} in virtual "
                    f"project {owner}/{repo}"
                )
            return self._sync_virtual(target, path, local, mode)

        if offline or self.client is None:
            if local is None:
                raise StorageError(
                    f"No local copy of {target.describe()}; cannot sync "
                    "offline"
                )
            logger.info("Offline: leaving %s untouched", path)
            return self._report(target, local.number, path, mode, offline=True)

        if path is not None and local is not None and local.is_pending:
            return await self._create_root(target, path, local, mode)

        number = target.number
        if number is None and local is not None:
            number = local.number
        if number is None:
            raise StorageError(f"Cannot tell which issue {path} holds")
        return await self._sync_remote(target, number, path, local, mode)

    async def _sync_remote(
        self,
        target: Target,
        number: int,
        path: Path | None,
        local: Issue | None,
        mode: MergeMode,
    ) -> SyncReport:
        owner, repo = target.owner, target.repo
        client = self._require_client()
        dialect = self._dialect(path)
        tree = await fetch_tree(client, owner, repo, number, await self._user())
        remote = tree.node
        consensus, consensus_text = self._consensus(path)

        result = merge_issue(local, consensus, remote, mode)
        if result.has_conflicts:
            if path is None or not self.history.available:
                raise _unrecorded_conflict(self.issues_dir, path, result)
            self._record_conflict(path, consensus_text, remote, result, dialect)

        pushed = await push_tree(client, owner, repo, result.issue, remote)
        root = replace_at(tree.root, tree.node_path, pushed.issue)
        duplicates = [tree.node_path + p for p in pushed.duplicates]
        settled = self._settle(
            owner,
            repo,
            root,
            [],
            duplicates,
            number,
            dialect,
            path,
            f"sync: {owner}/{repo}#{number}",
        )
        return self._report(
            target,
            number,
            settled.path,
            mode,
            settled.store,
            settled.removed,
            result,
            pushed.operations,
            settled.committed,
        )

    def _settle(
        self,
        owner: str,
        repo: str,
        root: Issue,
        ancestors: list[FetchedIssue],
        duplicates: list[tuple[int, ...]],
        number: int | None,
        dialect: Dialect,
        opened: Path | None,
        message: str,
    ) -> _Settled:
        """Drop duplicates, store what is left and commit the touched paths.

        Duplicates below the root disappear through the placement's
        orphan cleanup; a duplicate root has its entries removed here.
        """
        pruned = prune_duplicates(root, duplicates)
        if pruned is None:
            removed = self._remove_root(
                owner, repo, root, ancestors, dialect, opened
            )
            committed = self.history.commit(removed, message)
            return _Settled(None, None, removed, committed)

        store = self._store(owner, repo, pruned, ancestors, dialect, opened)
        found = locate(pruned, number) if number is not None else None
        new_path = store.path_of(found) if found is not None else None
        extra = self._drop_old_path(opened, store)
        committed = self.history.commit(store.touched + extra, message)
        return _Settled(store, new_path, extra, committed)

    def _remove_root(
        self,
        owner: str,
        repo: str,
        root: Issue,
        ancestors: list[FetchedIssue],
        dialect: Dialect,
        opened: Path | None,
    ) -> list[Path]:
        """Delete the local entries of a root closed as duplicate."""
        file_path = issue_file_path(
            self.issues_dir, owner, repo, root, ancestors, dialect
        )
        candidates = [file_path.parent if root.has_children() else file_path]
        if opened is not None:
            candidates.append(opened)
        removed = []
        for candidate in dict.fromkeys(candidates):
            if candidate.exists():
                logger.info("Removing duplicate %s", candidate)
                remove_path(candidate)
                removed.append(candidate)
        return removed

    def _record_conflict(
        self,
        path: Path,
        consensus_text: str | None,
        remote: Issue,
        result: MergeResult,
        dialect: Dialect,
    ) -> NoReturn:
        local_text = read_text(path)
        remote_text = serialize(
            remote,
            dialect,
            self.config.render_closed,
            fold_hint=self.context.fold_hint,
        )
        write_file_atomic(path, remote_text)
        self.history.commit(
            [path], f"sync: remote state of {remote.display_id()} (conflict)"
        )
        merged_text, has_markers = render_conflict_markers(
            consensus_text or "", local_text, remote_text
        )
        write_file_atomic(path, merged_text)
        if has_markers:
            self.tracker.mark(path)
        units = [conflict.unit for conflict in result.conflicts]
        raise ConflictError(
            f"{len(units)} conflicting change(s) in {path}: "
            f"{', '.join(units)}. Resolve the conflict markers and sync again.",
            units=units,
            path=path,
        )

    async def _create_root(
        self,
        target: Target,
        path: Path,
        local: Issue,
        mode: MergeMode,
    ) -> SyncReport:
        """Create a pending top-level file's issue, then store its tree."""
        owner, repo = target.owner, target.repo
        client = self._require_client()
        chain = ancestors_from_path(self.issues_dir, path)
        parent_number = chain[-1].number if chain else None
        pushed = await push_tree(
            client, owner, repo, local, None, parent_number=parent_number
        )
        number = pushed.issue.number
        outcome = await fetch_and_store(
            client,
            self.issues_dir,
            owner,
            repo,
            number,
            self._dialect(path),
            await self._user(),
            render_closed=self.config.render_closed,
            protect=self._protect(path),
            fold_hint=self.context.fold_hint,
        )
        extra = self._drop_old_path(path, outcome.store)
        committed = self.history.commit(
            outcome.store.touched + extra, f"sync: {owner}/{repo}#{number}"
        )
        return self._report(
            target,
            number,
            outcome.path,
            mode,
            outcome.store,
            extra,
            pushed=pushed.operations,
            committed=committed,
        )

    # ------------------------------------------------------------------
    # Virtual projects
    # ------------------------------------------------------------------

    def _assign_virtual_numbers(
        self, project: Path, owner: str, repo: str, tree: Issue
    ) -> Issue:
        queue: deque[tuple[int, ...]] = deque([()])
        while queue:
            path = queue.popleft()
            node = node_at(tree, path)
            if node.is_pending:
                number = allocate_virtual_issue_number(project, owner, repo)
                node = node.model_copy(
                    update={"url": issue_url(owner, repo, number, virtual=True)}
                )
                tree = replace_at(tree, path, node)
                logger.info("Allocated %s/%s#%d locally", owner, repo, number)
            queue.extend(path + (i,) for i in range(len(node.children)))
        return tree

    def _check_virtual_duplicates(
        self, project: Path, owner: str, repo: str, tree: Issue
    ) -> None:
        for node in walk(tree):
            state = node.issue.close_state
            if state.kind != CloseKind.DUPLICATE:
                continue
            target = state.duplicate_of
            if locate(tree, target) is None and (
                find_issue_file(project, target) is None
            ):
                raise ReferenceNotFoundError(
                    owner, repo, target, "Duplicate target"
                )

    def _unfold_local(self, project: Path, tree: Issue) -> Issue:
        """Fill folded sub-issues of *tree* from their own files.

        A closed sub-issue is folded in its parent's file.  Without a
        remote, its own file is the only copy of its content.  Title,
        labels and close state still come from the fold line.

        Raises:
            StorageError: If a folded sub-issue has no file of its own.
        """
        pending = [node.path for node in walk(tree) if node.issue.folded]
        while pending:
            path = pending.pop()
            node = node_at(tree, path)
            source = (
                find_issue_file(project, node.number)
                if node.number is not None
                else None
            )
            if source is None:
                raise StorageError(
                    f"No local file holds the folded content of "
                    f"{node.display_id()}"
                )
            logger.debug("Unfolding %s from %s", node.display_id(), source)
            full = self._parse_file(source).model_copy(
                update={
                    "title": node.title,
                    "labels": node.labels,
                    "close_state": node.close_state,
                    "folded": False,
                }
            )
            tree = replace_at(tree, path, full)
            pending.extend(
                path + sub.path for sub in walk(full) if sub.issue.folded
            )
        return tree

    def _sync_virtual(
        self, target: Target, path: Path, local: Issue, mode: MergeMode
    ) -> SyncReport:
        owner, repo = target.owner, target.repo
        project = project_dir(self.issues_dir, owner, repo)
        dialect = self._dialect(path)
        chain = ancestors_from_path(self.issues_dir, path)

        self._check_virtual_duplicates(project, owner, repo, local)
        tree = self._assign_virtual_numbers(project, owner, repo, local)
        number = tree.number

        root, node_path, ancestors = tree, (), chain
        if chain:
            root_path = find_issue_file(project, chain[0].number)
            if root_path is not None and root_path.resolve() != path.resolve():
                root_issue = self._parse_file(root_path)
                found = locate(root_issue, number)
                if found is not None:
                    root = replace_at(root_issue, found, tree)
                    node_path, ancestors = found, []

        root = self._unfold_local(project, root)
        duplicates = [
            node_path + node.path
            for node in walk(tree)
            if node.issue.close_state.kind == CloseKind.DUPLICATE
        ]
        settled = self._settle(
            owner,
            repo,
            root,
            ancestors,
            duplicates,
            number,
            dialect,
            path,
            f"sync: {owner}/{repo}#{number} (local)",
        )
        return self._report(
            target,
            number,
            settled.path,
            mode,
            settled.store,
            settled.removed,
            committed=settled.committed,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def open(
        self,
        target: Target,
        edit: Callable[[Path], bool],
        mode: MergeMode | None = None,
        offline: bool = False,
    ) -> SyncReport:
        """Pull, let the user edit, then push with a Normal-mode sync.

        Args:
            target: Issue to open.
            edit: Blocking editor call; returns ``False`` when the edit was
                aborted.
            mode: Merge mode of the pull before editing.
            offline: Do not contact the remote.
        """
        before = await self.sync(target, mode, offline)
        if before.path is None:
            return before
        path = Path(before.path)
        if not await run_sync(edit, path):
            logger.warning("Edit of %s was aborted; nothing synced", path)
            return before
        after = Target(
            target.owner,
            target.repo,
            number=before.number,
            path=path if path.exists() else None,
        )
        return await self.sync(after, MergeMode.normal(), offline)

    async def fetch(self, target: Target) -> SyncReport:
        """Fetch an issue's tree and store it without merging local edits.

        Files with uncommitted local edits are left alone.
        """
        self.tracker.check_all()
        number = target.number
        if number is None and target.path is not None:
            number = self._parse_file(target.path).number
        if number is None:
            raise StorageError(f"Cannot tell which issue {target.path} holds")
        client = self._require_client()
        outcome = await fetch_and_store(
            client,
            self.issues_dir,
            target.owner,
            target.repo,
            number,
            self.context.dialect,
            await self._user(),
            render_closed=self.config.render_closed,
            protect=self._protect(None),
            fold_hint=self.context.fold_hint,
        )
        committed = self.history.commit(
            outcome.store.touched,
            f"fetch: {target.owner}/{target.repo}#{number}",
        )
        return self._report(
            target,
            number,
            outcome.path,
            MergeMode.normal(),
            outcome.store,
            committed=committed,
        )

    async def touch(self, spec: str, virtual: bool = False) -> SyncReport:
        """Create an issue from ``owner/repo/[parent/...]title[.ext]``.

        Parent segments are issue numbers (``12`` or ``12_-_Title``) or
        titles; titles that do not resolve to an existing issue become new
        issues themselves, nested in order.

        Raises:
            ValueError: If *spec* has fewer than three segments.
            ReferenceNotFoundError: If a numbered parent does not exist.
        """
        self.tracker.check_all()
        parts = [part for part in spec.strip("/").split("/") if part]
        if len(parts) < 3:
            raise ValueError(
                f"Invalid touch target '{spec}': expected "
                "owner/repo/[parent/...]title"
            )
        owner, repo, *segments = parts
        leaf = segments.pop()
        dialect = self.context.dialect
        for candidate in Dialect:
            suffix = f".{candidate.extension}"
            if leaf.endswith(suffix):
                dialect, leaf = candidate, leaf[: -len(suffix)]
                break
        project = project_dir(self.issues_dir, owner, repo)
        if virtual:
            ensure_virtual_project(project, owner, repo)
        is_virtual = is_virtual_project(project, owner, repo)

        parent_number: int | None = None
        new_titles: list[str] = []
        for segment in segments:
            number = entry_number(segment) if not new_titles else None
            if number is None and not new_titles and not is_virtual:
                number = await run_sync_limited(
                    self._require_client().find_issue_by_title,
                    owner,
                    repo,
                    segment,
                )
            if number is None:
                new_titles.append(segment)
            else:
                parent_number = number
        new_titles.append(leaf)

        chain = Issue(title=new_titles[-1])
        for title in reversed(new_titles[:-1]):
            chain = Issue(title=title, children=(chain,))

        if parent_number is None:
            path = project / issue_filename(None, chain.title, dialect, False)
            write_file_atomic(path, serialize(chain, dialect))
            report = await self.sync(Target(owner, repo, path=path))
            return await self._leaf_report(report, owner, repo, new_titles[1:])

        parent_path = await self._parent_file(project, owner, repo, parent_number, is_virtual)
        parent = self._parse_file(parent_path)
        parent = parent.model_copy(
            update={"children": parent.children + (chain,)}
        )
        write_file_atomic(
            parent_path,
            serialize(parent, Dialect.from_path(parent_path), render_closed=True),
        )
        report = await self.sync(
            Target(owner, repo, number=parent_number, path=parent_path)
        )
        return await self._leaf_report(report, owner, repo, new_titles)

    async def _parent_file(
        self,
        project: Path,
        owner: str,
        repo: str,
        number: int,
        is_virtual: bool,
    ) -> Path:
        path = find_issue_file(project, number)
        if path is not None:
            return path
        if is_virtual:
            raise ReferenceNotFoundError(owner, repo, number, "Parent")
        try:
            report = await self.fetch(Target(owner, repo, number))
        except RemoteNotFoundError:
            raise ReferenceNotFoundError(owner, repo, number, "Parent") from None
        if report.path is None:
            raise StorageError(f"Fetching {owner}/{repo}#{number} stored no file")
        return Path(report.path)

    async def _leaf_report(
        self, report: SyncReport, owner: str, repo: str, titles: list[str]
    ) -> SyncReport:
        """Point *report* at the created issue below the synced one."""
        if report.path is None or not titles:
            return report
        synced = self._parse_file(Path(report.path))
        leaf = _find_by_titles(synced, titles)
        if leaf is None or leaf.number is None:
            return report
        project = project_dir(self.issues_dir, owner, repo)
        leaf_path = find_issue_file(project, leaf.number)
        return report.model_copy(
            update={
                "target": f"{owner}/{repo}#{leaf.number}",
                "number": leaf.number,
                "path": str(leaf_path) if leaf_path else report.path,
            }
        )

    def status(self) -> tuple[list[ConflictState], list[Path]]:
        """Unresolved conflicts and issue files with unsynced edits."""
        conflicts = self.tracker.list_conflicts()
        dirty = [
            path
            for path in search_issue_files(self.issues_dir)
            if self.history.is_dirty(path)
        ]
        return conflicts, dirty
