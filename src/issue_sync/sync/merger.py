"""Three-way merge of issue trees and text-level conflict rendering.

``merge_issue`` compares *local*, *consensus* and *remote* unit by unit:
title, labels, close state, body, blockers, each comment (keyed by id) and
each sub-issue (keyed by number, recursively).  Every unit is classified
with ``classify`` and resolved according to the ``MergeMode``.

Key design choices:

* **Absence is a value** -- a comment or sub-issue missing on one side is
  compared like any other value, so deletions are classified (and can
  conflict) exactly like edits.
* **No partial application** -- if any unit conflicts, no merged tree is
  returned at all; the caller gets the full conflict list instead.
* **No consensus, no guessing** -- without a recorded consensus nothing
  tells which side changed, so every unit where local and remote differ
  is BothChanged.  Pending local content (new comments and sub-issues) is
  still carried over.
* **Folds follow the remote** -- content hidden behind a fold marker is
  unknown locally and is always taken from the remote.
* **Read-only content** -- bodies and comments of other users cannot be
  pushed, so local edits to them are reported and dropped.

``render_conflict_markers`` uses the ``merge3`` library to write Git-style
conflict markers (``<<<<<<< local``, ``=======``, ``>>>>>>> remote``) into
the working file; ``generate_diff`` wraps ``difflib.unified_diff``.
"""

from __future__ import annotations

import difflib
import logging
from typing import Any, Callable

from merge3 import Merge3

from ..models import (
    BlockerSequence,
    CloseState,
    Comment,
    Issue,
    normalize_text,
    presentation_key,
)
from .models import (
    ConflictInfo,
    MergeMode,
    MergeModeKind,
    MergeResult,
    Prefer,
    UnitChange,
    UnitOutcome,
)

logger = logging.getLogger(__name__)

# Consensus of a unit that has no recorded history.
_UNKNOWN = object()

START_MARKER = "<<<<<<< local"
MID_MARKER = "======="
END_MARKER = ">>>>>>> remote"


def classify(local: Any, consensus: Any, remote: Any) -> UnitChange:
    """Classify one unit given comparable keys of its three versions.

    Both sides agreeing (even on a new value) counts as unchanged: there
    is nothing to reconcile.
    """
    if local == remote:
        return UnitChange.UNCHANGED
    if local == consensus:
        return UnitChange.REMOTE_ONLY
    if remote == consensus:
        return UnitChange.LOCAL_ONLY
    return UnitChange.BOTH_CHANGED


# ---------------------------------------------------------------------------
# Unit keys and rendering
# ---------------------------------------------------------------------------


def _same(value: Any) -> Any:
    return value


def _title_key(title: str | None) -> str | None:
    return None if title is None else title.strip()


def _labels_key(labels: tuple[str, ...] | None) -> tuple[str, ...] | None:
    return None if labels is None else tuple(sorted(labels))


def _text_key(text: str | None) -> str | None:
    return None if text is None else normalize_text(text)


def _comment_key(comment: Comment | None) -> str | None:
    return None if comment is None else normalize_text(comment.body)


def _child_key(child: Issue | None) -> tuple | None:
    return None if child is None else presentation_key(child)


def _base(consensus: Issue | None, field: str) -> Any:
    return _UNKNOWN if consensus is None else getattr(consensus, field)


def _render(value: Any) -> str | None:
    """Text shown for a value in conflict reports."""
    if value is None:
        return None
    if isinstance(value, Comment):
        return value.body
    if isinstance(value, Issue):
        return f"[{value.close_state.to_checkbox()}] {value.title}"
    if isinstance(value, BlockerSequence):
        return "\n".join(
            "\t" * line.depth + line.text for line in value.lines
        )
    if isinstance(value, CloseState):
        return f"[{value.to_checkbox()}]"
    if isinstance(value, tuple):
        return ", ".join(value)
    return str(value)


def _ordered(primary: list, secondary: list, present: set) -> list:
    """Keys of *primary* order, with keys only in *secondary* inserted
    after their nearest preceding *secondary* neighbour."""
    result = [key for key in primary if key in present]
    placed = set(result)
    for index, key in enumerate(secondary):
        if key in placed or key not in present:
            continue
        position = 0
        for previous in reversed(secondary[:index]):
            if previous in placed:
                position = result.index(previous) + 1
                break
        result.insert(position, key)
        placed.add(key)
    return result


# ---------------------------------------------------------------------------
# Tree merge
# ---------------------------------------------------------------------------


class _Merger:
    """Accumulates outcomes and conflicts over one tree merge."""

    def __init__(self, mode: MergeMode) -> None:
        self.mode = mode
        self.outcomes: list[UnitOutcome] = []
        self.conflicts: list[ConflictInfo] = []

    @property
    def _keeps_pending(self) -> bool:
        return not (
            self.mode.kind == MergeModeKind.RESET
            and self.mode.prefer == Prefer.REMOTE
        )

    def pick(
        self,
        unit: str,
        local: Any,
        consensus: Any,
        remote: Any,
        key: Callable[[Any], Any] = _same,
    ) -> Any:
        """Merged value of one unit.

        An ``_UNKNOWN`` consensus equals neither side, so any difference
        between local and remote is BothChanged.
        """
        base_key = consensus if consensus is _UNKNOWN else key(consensus)
        change = classify(key(local), base_key, key(remote))
        if change == UnitChange.UNCHANGED:
            taken = "remote"
        elif self.mode.kind == MergeModeKind.RESET:
            taken = self.mode.prefer.value
        elif change == UnitChange.LOCAL_ONLY:
            taken = "local"
        elif change == UnitChange.REMOTE_ONLY:
            taken = "remote"
        elif self.mode.kind == MergeModeKind.FORCE:
            taken = self.mode.prefer.value
        else:
            self.conflicts.append(
                ConflictInfo(
                    unit=unit,
                    local=_render(local),
                    consensus=_render(
                        None if consensus is _UNKNOWN else consensus
                    ),
                    remote=_render(remote),
                )
            )
            self.outcomes.append(
                UnitOutcome(unit=unit, change=change, taken="conflict")
            )
            return local
        self.outcomes.append(UnitOutcome(unit=unit, change=change, taken=taken))
        return local if taken == "local" else remote

    def read_only(
        self,
        unit: str,
        local: Any,
        consensus: Any,
        remote: Any,
        key: Callable[[Any], Any] = _same,
    ) -> Any:
        """Replace a local value the user may not change.

        The consensus is restored, or the remote value when there is none.
        """
        restored = remote if consensus is _UNKNOWN else consensus
        if key(local) != key(restored):
            logger.warning("Ignoring local edit of read-only %s", unit)
            self.outcomes.append(
                UnitOutcome(
                    unit=unit,
                    change=UnitChange.LOCAL_ONLY,
                    taken="remote",
                    note="read-only, local edit dropped",
                )
            )
        return restored

    def merge(
        self, local: Issue, consensus: Issue | None, remote: Issue
    ) -> Issue:
        name = remote.display_id()

        title = self.pick(
            f"{name} title",
            local.title,
            _base(consensus, "title"),
            remote.title,
            _title_key,
        )
        labels = self.pick(
            f"{name} labels",
            local.labels,
            _base(consensus, "labels"),
            remote.labels,
            _labels_key,
        )
        close_state = self.pick(
            f"{name} state",
            local.close_state,
            _base(consensus, "close_state"),
            remote.close_state,
        )
        update: dict[str, Any] = {
            "title": title,
            "labels": labels,
            "close_state": close_state,
            "folded": False,
        }
        if local.folded:
            # Content behind a fold is unknown locally.
            return remote.model_copy(update=update)

        base = consensus
        if base is not None and base.folded:
            base = base.model_copy(
                update={
                    "body": remote.body,
                    "comments": remote.comments,
                    "blockers": remote.blockers,
                    "children": remote.children,
                    "folded": False,
                }
            )
        body, blockers = local.body, local.blockers
        if not remote.owned:
            body = self.read_only(
                f"{name} body",
                body,
                _base(base, "body"),
                remote.body,
                _text_key,
            )
            blockers = self.read_only(
                f"{name} blockers",
                blockers,
                _base(base, "blockers"),
                remote.blockers,
            )
        update["body"] = self.pick(
            f"{name} body", body, _base(base, "body"), remote.body, _text_key
        )
        update["blockers"] = self.pick(
            f"{name} blockers",
            blockers,
            _base(base, "blockers"),
            remote.blockers,
        )
        update["comments"] = self._merge_comments(name, local, base, remote)
        update["children"] = self._merge_children(name, local, base, remote)
        return remote.model_copy(update=update)

    def _merge_comments(
        self, name: str, local: Issue, base: Issue | None, remote: Issue
    ) -> tuple[Comment, ...]:
        local_by_id = {c.id: c for c in local.comments if c.id is not None}
        base_comments = base.comments if base is not None else ()
        base_by_id = {c.id: c for c in base_comments if c.id is not None}
        missing = _UNKNOWN if base is None else None
        remote_by_id = {c.id: c for c in remote.comments if c.id is not None}

        order = list(remote_by_id)
        order += [cid for cid in local_by_id if cid not in remote_by_id]
        order += [
            cid
            for cid in base_by_id
            if cid not in remote_by_id and cid not in local_by_id
        ]

        merged: list[Comment] = []
        for cid in order:
            unit = f"{name} comment {cid}"
            lc = local_by_id.get(cid)
            bc = base_by_id.get(cid, missing)
            rc = remote_by_id.get(cid)
            known = rc or base_by_id.get(cid) or lc
            if known is not None and not known.owned and bc is not None:
                lc = self.read_only(unit, lc, bc, rc, _comment_key)
            value = self.pick(unit, lc, bc, rc, _comment_key)
            if value is not None:
                merged.append(value)

        for index, comment in enumerate(local.comments):
            if not comment.is_pending:
                continue
            unit = f"{name} new comment {index + 1}"
            if self._keeps_pending:
                merged.append(comment)
                self.outcomes.append(
                    UnitOutcome(
                        unit=unit, change=UnitChange.LOCAL_ONLY, taken="local"
                    )
                )
            else:
                self.outcomes.append(
                    UnitOutcome(
                        unit=unit,
                        change=UnitChange.LOCAL_ONLY,
                        taken="remote",
                        note="reset discarded pending comment",
                    )
                )
        return tuple(merged)

    def _merge_children(
        self, name: str, local: Issue, base: Issue | None, remote: Issue
    ) -> tuple[Issue, ...]:
        def _keys(issue: Issue) -> list:
            return [
                ("pending", index) if child.is_pending else child.number
                for index, child in enumerate(issue.children)
            ]

        local_by_key = dict(zip(_keys(local), local.children))
        base_children = base.children if base is not None else ()
        base_by_key = {
            c.number: c for c in base_children if not c.is_pending
        }
        missing = _UNKNOWN if base is None else None
        remote_by_key = {c.number: c for c in remote.children}

        merged: dict[Any, Issue] = {}
        numbers = list(remote_by_key)
        numbers += [k for k in local_by_key if not isinstance(k, tuple)]
        numbers += list(base_by_key)
        for number in dict.fromkeys(numbers):
            lc = local_by_key.get(number)
            bc = base_by_key.get(number, missing)
            rc = remote_by_key.get(number)
            if lc is not None and rc is not None:
                merged[number] = self.merge(lc, base_by_key.get(number), rc)
                continue
            value = self.pick(
                f"{name} sub-issue #{number}", lc, bc, rc, _child_key
            )
            if value is not None:
                merged[number] = value

        for key, child in local_by_key.items():
            if not isinstance(key, tuple):
                continue
            unit = f"{name} new sub-issue '{child.title}'"
            if self._keeps_pending:
                merged[key] = child
                self.outcomes.append(
                    UnitOutcome(
                        unit=unit, change=UnitChange.LOCAL_ONLY, taken="local"
                    )
                )
            else:
                self.outcomes.append(
                    UnitOutcome(
                        unit=unit,
                        change=UnitChange.LOCAL_ONLY,
                        taken="remote",
                        note="reset discarded pending sub-issue",
                    )
                )

        local_order = list(local_by_key)
        remote_order = list(remote_by_key)
        if (
            self.mode.kind == MergeModeKind.RESET
            and self.mode.prefer == Prefer.LOCAL
        ):
            order = _ordered(local_order, remote_order, set(merged))
        else:
            order = _ordered(remote_order, local_order, set(merged))
        return tuple(merged[key] for key in order)


def merge_issue(
    local: Issue | None,
    consensus: Issue | None,
    remote: Issue | None,
    mode: MergeMode | None = None,
) -> MergeResult:
    """Merge the three versions of an issue tree.

    Args:
        local: Parsed local file, or ``None`` when there is none.
        consensus: Last committed version, or ``None`` when unknown.
        remote: Freshly fetched tree, or ``None`` when offline.
        mode: Merge mode; defaults to ``MergeMode.normal()``.

    Returns:
        A ``MergeResult``.  ``issue`` is ``None`` exactly when
        ``conflicts`` is non-empty.

    Raises:
        ValueError: If *local* and *remote* are different issues.
    """
    mode = mode or MergeMode.normal()
    if remote is None:
        return MergeResult(issue=local)
    if local is None:
        return MergeResult(issue=remote)
    if local.url is not None and local.url != remote.url:
        raise ValueError(
            f"Cannot merge {local.display_id()} with {remote.display_id()}"
        )

    merger = _Merger(mode)
    merged = merger.merge(local, consensus, remote)
    if merger.conflicts:
        logger.info(
            "Merge of %s found %d conflict(s)",
            remote.display_id(),
            len(merger.conflicts),
        )
        return MergeResult(
            outcomes=merger.outcomes, conflicts=merger.conflicts
        )
    return MergeResult(issue=merged, outcomes=merger.outcomes)


# ---------------------------------------------------------------------------
# Text-level helpers
# ---------------------------------------------------------------------------


def render_conflict_markers(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> tuple[str, bool]:
    """Three-way merge of document texts with conflict markers.

    Args:
        base_content: Consensus text (empty when there is none).
        local_content: Local file text.
        remote_content: Remote rendering.

    Returns:
        ``(merged_text, has_conflicts)``.
    """
    m3 = Merge3(
        base_content.splitlines(True),
        local_content.splitlines(True),
        remote_content.splitlines(True),
    )
    merged_lines = list(
        m3.merge_lines(
            name_a="local",
            name_b="remote",
            start_marker="<<<<<<<",
            mid_marker=MID_MARKER,
            end_marker=">>>>>>>",
        )
    )
    merged_text = "".join(merged_lines)
    return merged_text, START_MARKER in merged_text


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Unified diff between two strings; empty when they are identical."""
    return "".join(
        difflib.unified_diff(
            old_content.splitlines(True),
            new_content.splitlines(True),
            fromfile=label_old,
            tofile=label_new,
        )
    )
