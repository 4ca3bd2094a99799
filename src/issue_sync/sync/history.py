"""Consensus history backed by git.

The consensus of an issue file is its content at ``HEAD`` in the git
repository that contains the issues directory.  A successful sync commits
exactly the paths it wrote or removed, so unrelated local edits in other
files never become consensus by accident.

Without git (binary missing or no repository) there is no consensus and
every file counts as clean.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from ..errors import StorageError
from ..file_handler import read_text

logger = logging.getLogger(__name__)

_GIT_TIMEOUT = 30


class ConsensusHistory:
    """Read and record consensus versions of files under *root*.

    Args:
        root: The issues directory (``{data_root}/issues``).
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._available: bool | None = None

    # ------------------------------------------------------------------
    # git plumbing
    # ------------------------------------------------------------------

    def _git(
        self, *args: str, check: bool = True
    ) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=str(self.root),
                capture_output=True,
                text=True,
                timeout=_GIT_TIMEOUT,
            )
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise StorageError(f"git {args[0]} failed: {exc}") from exc
        if check and result.returncode != 0:
            raise StorageError(
                f"git {' '.join(args)} failed: {result.stderr.strip()}"
            )
        return result

    @property
    def available(self) -> bool:
        """``True`` when *root* is inside a git work tree."""
        if self._available is None:
            if shutil.which("git") is None or not self.root.is_dir():
                self._available = False
            else:
                result = self._git("rev-parse", "--git-dir", check=False)
                self._available = result.returncode == 0
            if not self._available:
                logger.debug("No git history at %s", self.root)
        return self._available

    def _rel(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            raise StorageError(
                f"{path} is not inside the issues directory {self.root}"
            ) from None

    def is_tracked(self, path: Path) -> bool:
        if not self.available:
            return False
        result = self._git("ls-files", "--", self._rel(path), check=False)
        return bool(result.stdout.strip())

    # ------------------------------------------------------------------
    # Consensus
    # ------------------------------------------------------------------

    def read(self, path: Path) -> str | None:
        """Consensus text of *path*, or ``None`` when it has none."""
        if not self.available:
            return None
        result = self._git("show", f"HEAD:./{self._rel(path)}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def is_dirty(self, path: Path) -> bool:
        """``True`` when *path* holds local edits that are not committed.

        Untracked issue files count as dirty: they are new local work.
        """
        if not self.available or not path.is_file():
            return False
        committed = self.read(path)
        if committed is None:
            return True
        return read_text(path) != committed

    def commit(self, paths: list[Path], message: str) -> bool:
        """Commit the current state of *paths* as the new consensus.

        Removed paths are committed as deletions when they were tracked.

        Returns:
            ``True`` if a commit was created.

        Raises:
            StorageError: If git fails.
        """
        if not self.available:
            return False
        rels = []
        for path in dict.fromkeys(paths):
            if path.exists() or self.is_tracked(path):
                rels.append(self._rel(path))
        if not rels:
            return False
        self._git("add", "-A", "--", *rels)
        staged = self._git(
            "diff", "--cached", "--quiet", "--", *rels, check=False
        )
        if staged.returncode == 0:
            logger.debug("Nothing to commit for %s", message)
            return False
        self._git("commit", "--quiet", "-m", message, "--", *rels)
        logger.info("Recorded consensus: %s", message)
        return True
