"""Text codec for issue documents.

Modules:

- ``markers``    -- ``Dialect`` and the per-dialect marker spellings.
- ``indent``     -- indentation normalisation and shorthand expansion.
- ``parser``     -- ``parse()``: document text to ``Issue`` tree.
- ``serializer`` -- ``serialize()``: ``Issue`` tree to canonical text.
- ``blockers``   -- blockers section encoding and the remote body split.

Usage example
-------------
::

    from issue_sync.codec import Dialect, ParseContext, parse, serialize

    ctx = ParseContext(text, name="42_-_Fix_login.md")
    issue = parse(text, ctx, Dialect.MARKDOWN)
    canonical = serialize(issue)  # parses back to the same tree
"""

from .blockers import (
    join_blockers,
    parse_blocker_text,
    render_blocker_text,
    split_blockers,
)
from .markers import Dialect
from .parser import ParseContext, parse
from .serializer import serialize

__all__ = [
    "Dialect",
    "ParseContext",
    "join_blockers",
    "parse",
    "parse_blocker_text",
    "render_blocker_text",
    "serialize",
    "split_blockers",
]
