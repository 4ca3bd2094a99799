"""Blocker storage: a standalone file or the section of an issue file.

Both variants expose the same three operations (``load``, ``save``,
``display_name``); ``blocker_store`` picks one for a target.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, Union

from .codec import (
    Dialect,
    ParseContext,
    parse,
    parse_blocker_text,
    render_blocker_text,
    serialize,
)
from .file_handler import read_text, write_file_atomic
from .models import BlockerSequence, Issue
from .placement import MAIN_STEM, is_issue_file

logger = logging.getLogger(__name__)


class BlockerStore(Protocol):
    def load(self) -> BlockerSequence: ...

    def save(self, blockers: BlockerSequence) -> None: ...

    def display_name(self) -> str: ...


class StandaloneBlockers:
    """Blockers kept in their own file under ``{data_root}/blockers/``."""

    def __init__(self, path: Path, dialect: Dialect = Dialect.MARKDOWN) -> None:
        self.path = path
        self.dialect = dialect

    def load(self) -> BlockerSequence:
        if not self.path.exists():
            return BlockerSequence()
        return parse_blocker_text(read_text(self.path), self.dialect)

    def save(self, blockers: BlockerSequence) -> None:
        write_file_atomic(self.path, render_blocker_text(blockers, self.dialect))

    def display_name(self) -> str:
        return self.path.stem


class EmbeddedBlockers:
    """The blockers section of an issue file.

    Saving re-renders the whole document; folded sub-issues stay folded
    and closed sub-issues that were written out stay written out.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.dialect = Dialect.from_path(path)

    def _parse(self) -> Issue:
        text = read_text(self.path)
        return parse(text, ParseContext(text, str(self.path)), self.dialect)

    def load(self) -> BlockerSequence:
        return self._parse().blockers

    def save(self, blockers: BlockerSequence) -> None:
        issue = self._parse().model_copy(update={"blockers": blockers})
        write_file_atomic(
            self.path, serialize(issue, self.dialect, render_closed=True)
        )
        logger.debug("Saved %d blocker line(s) to %s", len(blockers), self.path)

    def display_name(self) -> str:
        return self._parse().title


BlockerSource = Union[StandaloneBlockers, EmbeddedBlockers]


def blocker_store(
    target: str, blockers_dir: Path, dialect: Dialect = Dialect.MARKDOWN
) -> BlockerSource:
    """Embedded store for an issue file, standalone store otherwise.

    *target* is an issue file path or the name of a standalone list.
    """
    path = Path(target).expanduser()
    if is_issue_file(path) and path.is_file():
        return EmbeddedBlockers(path)
    if path.is_dir():
        mains = sorted(path.glob(f"{MAIN_STEM}.*"))
        if mains:
            return EmbeddedBlockers(mains[0])
    return StandaloneBlockers(
        blockers_dir / f"{path.name}.{dialect.extension}", dialect
    )


def current_blocker(store: BlockerSource) -> str | None:
    """Current blocker of *store* prefixed with its owner and headers."""
    return store.load().current_with_context([store.display_name()])
