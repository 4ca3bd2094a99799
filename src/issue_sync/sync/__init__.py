"""Consensus-based issue sync engine.

Public API for keeping local issue files and their GitHub issues in line.

Architecture
------------
Every sync is a three-way merge between the local file, the remote issue
tree and the **consensus**: the version of the file last committed to the
git repository that holds the issues directory.  Each unit (title,
labels, body, state, comment, sub-issue list) is classified against the
consensus on its own, so edits on different units never conflict.

Modules:

- ``engine``    -- ``SyncEngine``: ``open``, ``fetch``, ``touch``, ``status``.
- ``merger``    -- per-unit three-way merge and conflict-marker rendering.
- ``push``      -- ordered remote writes for a merged tree.
- ``history``   -- ``ConsensusHistory``: git-backed consensus store.
- ``models``    -- ``MergeMode``, ``UnitOutcome``, ``ConflictInfo``,
  ``MergeResult``, ``SyncReport``: core data contracts.
- ``reporter``  -- human-readable and JSON report formatting.

Usage example
-------------
::

    import asyncio

    from issue_sync.context import build_context
    from issue_sync.core.client import GitHubClient
    from issue_sync.sync import SyncEngine, Target, format_sync_report

    context = build_context()
    engine = SyncEngine(context, GitHubClient(context.config))
    report = asyncio.run(engine.sync(Target("octo", "tools", 42)))
    print(format_sync_report(report))
"""

from .engine import SyncEngine, Target, resolve_target
from .history import ConsensusHistory
from .merger import merge_issue
from .models import (
    ConflictInfo,
    MergeMode,
    MergeResult,
    Prefer,
    SyncReport,
    UnitChange,
    UnitOutcome,
)
from .push import PushResult, push_tree
from .reporter import format_status, format_sync_report, report_to_json

__all__ = [
    "ConflictInfo",
    "ConsensusHistory",
    "MergeMode",
    "MergeResult",
    "Prefer",
    "PushResult",
    "SyncEngine",
    "SyncReport",
    "Target",
    "UnitChange",
    "UnitOutcome",
    "format_status",
    "format_sync_report",
    "merge_issue",
    "push_tree",
    "report_to_json",
    "resolve_target",
]
