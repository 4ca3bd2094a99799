"""Pydantic models for the consensus sync engine.

Defines the data contracts shared by the sync modules:

- ``MergeMode``: how a ``BOTH_CHANGED`` unit is resolved.
- ``UnitChange``: classification of one unit against the consensus.
- ``UnitOutcome``: what the merge did with one unit.
- ``ConflictInfo``: a unit that needs a human decision.
- ``MergeResult``: outcome of merging one issue tree.
- ``SyncReport``: what one sync run did, for display.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from ..models import Issue


class Prefer(str, Enum):
    """Side taken by ``Force`` and ``Reset`` merges."""

    LOCAL = "local"
    REMOTE = "remote"


class MergeModeKind(str, Enum):
    NORMAL = "normal"
    FORCE = "force"
    RESET = "reset"


class MergeMode(BaseModel):
    """Merge mode of a sync run.

    Attributes:
        kind: ``normal`` raises conflicts, ``force`` resolves conflicting
            units to *prefer*, ``reset`` takes *prefer* wholesale.
        prefer: Preferred side for ``force`` and ``reset``.
    """

    kind: MergeModeKind = MergeModeKind.NORMAL
    prefer: Prefer = Prefer.LOCAL

    model_config = {"frozen": True}

    @classmethod
    def normal(cls) -> MergeMode:
        return cls()

    @classmethod
    def force(cls, prefer: Prefer) -> MergeMode:
        return cls(kind=MergeModeKind.FORCE, prefer=prefer)

    @classmethod
    def reset(cls, prefer: Prefer) -> MergeMode:
        return cls(kind=MergeModeKind.RESET, prefer=prefer)

    def __str__(self) -> str:
        if self.kind == MergeModeKind.NORMAL:
            return "normal"
        return f"{self.kind.value}({self.prefer.value})"


class UnitChange(str, Enum):
    """Classification of a unit against the last consensus."""

    UNCHANGED = "unchanged"
    LOCAL_ONLY = "local_only"
    REMOTE_ONLY = "remote_only"
    BOTH_CHANGED = "both_changed"


class UnitOutcome(BaseModel):
    """Result of merging one unit.

    Attributes:
        unit: Identifier such as ``"#12 title"`` or ``"#12 comment 991"``.
        change: The unit's classification.
        taken: ``"local"``, ``"remote"`` or ``"conflict"``.
        note: Extra detail for the report, if any.
    """

    unit: str
    change: UnitChange
    taken: str
    note: str | None = None

    model_config = {"frozen": True}


class ConflictInfo(BaseModel):
    """A unit changed on both sides in different ways.

    Attributes:
        unit: Identifier of the unit.
        local: Local value rendered as text (``None`` when absent).
        consensus: Consensus value rendered as text.
        remote: Remote value rendered as text.
    """

    unit: str
    local: str | None = None
    consensus: str | None = None
    remote: str | None = None

    model_config = {"frozen": True}


class MergeResult(BaseModel):
    """Outcome of merging one issue tree.

    Attributes:
        issue: The merged tree, or ``None`` when there are conflicts.
        outcomes: Per-unit outcomes, in merge order.
        conflicts: Units that need manual resolution.
    """

    issue: Issue | None = None
    outcomes: list[UnitOutcome] = []
    conflicts: list[ConflictInfo] = []

    model_config = {"frozen": True}

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def local_changes(self) -> list[UnitOutcome]:
        """Units whose merged value came from the local side."""
        return [
            o
            for o in self.outcomes
            if o.taken == "local" and o.change != UnitChange.UNCHANGED
        ]

    @property
    def remote_changes(self) -> list[UnitOutcome]:
        """Units whose merged value came from the remote side."""
        return [
            o
            for o in self.outcomes
            if o.taken == "remote" and o.change != UnitChange.UNCHANGED
        ]


class SyncReport(BaseModel):
    """What one ``open``/``fetch`` run did.

    Attributes:
        target: Display id of the synced issue.
        number: Number of the synced issue, once known.
        path: File of the synced issue; ``None`` when it was removed.
        mode: Merge mode used for the pull.
        offline: ``True`` when the remote was not contacted.
        pulled: Units taken from the remote.
        pushed: Remote operations performed, in order.
        removed: Local paths removed (duplicates, stale placement).
        protected: Paths left alone because of unsynced local edits.
        conflicts: Unresolved units.
        committed: ``True`` when a new consensus was recorded.
    """

    target: str
    number: int | None = None
    path: str | None = None
    mode: str = "normal"
    offline: bool = False
    pulled: list[str] = []
    pushed: list[str] = []
    removed: list[str] = []
    protected: list[str] = []
    conflicts: list[str] = []
    committed: bool = False

    model_config = {"frozen": True}

    @property
    def changed(self) -> bool:
        return bool(self.pulled or self.pushed or self.removed)
