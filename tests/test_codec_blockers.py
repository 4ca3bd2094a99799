"""Tests for blockers section encoding inside remote bodies."""

from issue_sync.codec import Dialect
from issue_sync.codec.blockers import (
    classify_blocker_line,
    join_blockers,
    parse_blocker_text,
    render_blocker_text,
    split_blockers,
)
from issue_sync.models import BlockerLine, BlockerSequence


class TestClassifyBlockerLine:
    def test_item(self):
        assert classify_blocker_line(Dialect.MARKDOWN, "- fix it", 0) == (
            BlockerLine(text="fix it")
        )

    def test_item_without_prefix(self):
        assert classify_blocker_line(Dialect.MARKDOWN, "fix it", 1) == (
            BlockerLine(text="fix it", depth=1)
        )

    def test_header(self):
        assert classify_blocker_line(Dialect.TYPST, "== Phase 2", 0) == (
            BlockerLine(text="Phase 2", header_level=2)
        )


class TestSplitBlockers:
    def test_no_section(self):
        body, blockers = split_blockers("Just a body.")
        assert body == "Just a body."
        assert blockers.is_empty()

    def test_section_at_end(self):
        body, blockers = split_blockers(
            "Intro\n\n# Blockers\n## Phase 1\n- a\n\t- b\n"
        )
        assert body == "Intro"
        assert blockers.lines == (
            BlockerLine(text="Phase 1", header_level=2),
            BlockerLine(text="a"),
            BlockerLine(text="b", depth=1),
        )

    def test_indented_header_is_body_text(self):
        text = "Intro\n\t# Blockers\n- a"
        assert split_blockers(text) == (text, BlockerSequence())

    def test_join_round_trip(self):
        blockers = BlockerSequence().add("Phase 1", header_level=1).add("a")
        joined = join_blockers("Intro", blockers)
        assert joined == "Intro\n\n# Blockers\n# Phase 1\n- a"
        assert split_blockers(joined) == ("Intro", blockers)

    def test_join_empty_body(self):
        blockers = BlockerSequence().add("a")
        assert join_blockers("", blockers, Dialect.TYPST) == "= Blockers\n- a"

    def test_join_without_blockers(self):
        assert join_blockers("Body", BlockerSequence()) == "Body"


class TestStandaloneText:
    def test_parse_skips_header_and_blanks(self):
        blockers = parse_blocker_text("# Blockers\n\n- a\n- b\n")
        assert [line.text for line in blockers.items()] == ["a", "b"]

    def test_render(self):
        blockers = BlockerSequence().add("a").add("b", depth=1)
        assert render_blocker_text(blockers) == "- a\n\t- b\n"
        assert render_blocker_text(BlockerSequence()) == ""
