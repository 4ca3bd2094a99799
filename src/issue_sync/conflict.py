"""Conflict tracker: a process-wide gate on unresolved merges.

A conflict is recorded as ``{state_dir}/conflicts/{hash}.conflict``: the path
of the file holding the conflict markers, then the ISO 8601 time it was
detected.  Every top-level command calls ``check_all()`` first; records
whose file is gone or no longer holds markers are cleared, and the first
file that still does blocks the command with ``ConflictBlockedError``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .errors import ConflictBlockedError, StorageError
from .file_handler import read_text, remove_path, write_file_atomic
from .models import ConflictState, path_hash

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".conflict"


def has_conflict_markers(text: str) -> bool:
    """``True`` when *text* holds start, middle and end markers."""
    lines = text.splitlines()
    return (
        any(line.startswith("<<<<<<<") for line in lines)
        and any(line.rstrip() == "=======" for line in lines)
        and any(line.startswith(">>>>>>>") for line in lines)
    )


class ConflictTracker:
    """Persisted set of files with unresolved conflict markers.

    Args:
        state_dir: Tool state directory; records live in ``conflicts/``.
        clock: Returns the current time; stamps new records.
    """

    def __init__(
        self,
        state_dir: Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.conflicts_dir = state_dir / "conflicts"
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def record_path(self, path: Path) -> Path:
        key = path_hash(str(path.resolve()))
        return self.conflicts_dir / f"{key}{RECORD_SUFFIX}"

    def mark(self, path: Path) -> Path:
        """Record that *path* holds conflict markers."""
        record = self.record_path(path)
        detected_at = self.clock().isoformat()
        write_file_atomic(record, f"{path.resolve()}\n{detected_at}\n")
        logger.warning("Recorded conflict in %s", path)
        return record

    def clear(self, path: Path) -> None:
        record = self.record_path(path)
        if record.exists():
            remove_path(record)

    def _records(self) -> list[Path]:
        if not self.conflicts_dir.is_dir():
            return []
        return sorted(self.conflicts_dir.glob(f"*{RECORD_SUFFIX}"))

    def _fields(self, record: Path) -> list[str]:
        return read_text(record).splitlines()

    def _target(self, record: Path) -> Path:
        fields = self._fields(record)
        return Path(fields[0].strip() if fields else "")

    def _detected_at(self, record: Path) -> str:
        fields = self._fields(record)
        if len(fields) > 1 and fields[1].strip():
            return fields[1].strip()
        # Records without a timestamp fall back to their mtime.
        try:
            mtime = record.stat().st_mtime
        except OSError as exc:
            raise StorageError(f"Cannot stat {record}: {exc}") from exc
        return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()

    def _still_conflicted(self, record: Path) -> Path | None:
        """Target of *record* if it still holds markers; clears it if not."""
        target = self._target(record)
        if not target.is_file():
            logger.info("Conflict file %s is gone, clearing record", target)
            remove_path(record)
            return None
        if has_conflict_markers(read_text(target)):
            return target
        logger.info("Conflict in %s was resolved", target)
        remove_path(record)
        return None

    def check_all(self) -> None:
        """Clear resolved records; raise for the first unresolved one.

        Raises:
            ConflictBlockedError: If a recorded file still has markers.
            StorageError: If a record cannot be read or removed.
        """
        blocking: list[Path] = []
        for record in self._records():
            target = self._still_conflicted(record)
            if target is not None:
                blocking.append(target)
        if blocking:
            raise ConflictBlockedError(blocking[0])

    def list_conflicts(self) -> list[ConflictState]:
        """Unresolved conflicts, clearing resolved records on the way."""
        states = []
        for record in self._records():
            target = self._still_conflicted(record)
            if target is None:
                continue
            states.append(
                ConflictState(
                    path=str(target),
                    detected_at=self._detected_at(record),
                    reason="conflict markers present",
                )
            )
        return states
