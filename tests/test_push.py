"""Tests for sync/push.py: making the remote match a merged tree."""

import pytest

from conftest import ME, OWNER, REPO
from issue_sync.errors import ReferenceNotFoundError
from issue_sync.fetch import fetch_issue_tree
from issue_sync.models import (
    BlockerSequence,
    CloseKind,
    CloseState,
    Comment,
    Issue,
)
from issue_sync.sync.push import prune_duplicates, push_tree, remote_body


async def _remote_tree(remote, number=1):
    return await fetch_issue_tree(remote, OWNER, REPO, number, ME)


@pytest.fixture
def seeded(fake_remote):
    fake_remote.add_issue("Root", body="Body")
    fake_remote.add_issue("Child", parent=1)
    fake_remote.add_comment(1, "mine")
    fake_remote.add_comment(1, "theirs", author="bob")
    return fake_remote


class TestRemoteBody:
    def test_blockers_appended(self):
        issue = Issue(title="t", body="Text", blockers=BlockerSequence().add("a"))
        assert remote_body(issue) == "Text\n\n# Blockers\n- a"

    def test_plain_body(self):
        assert remote_body(Issue(title="t", body="Text")) == "Text"


class TestCreate:
    async def test_new_root_with_children_and_comment(self, fake_remote):
        tree = Issue(
            title="New root",
            labels=("idea",),
            comments=(Comment(body="first note"),),
            children=(Issue(title="Step 1", children=(Issue(title="Step 1a"),)),),
        )
        result = await push_tree(fake_remote, OWNER, REPO, tree, None)
        assert fake_remote.calls == [
            ("create_issue", 1, "New root"),
            ("create_issue", 2, "Step 1"),
            ("add_sub_issue", 1, 2),
            ("create_issue", 3, "Step 1a"),
            ("add_sub_issue", 2, 3),
            ("create_comment", 1, 900),
        ]
        pushed = result.issue
        assert pushed.url == "https://github.com/octo/tools/issues/1"
        assert pushed.children[0].children[0].number == 3
        assert pushed.comments[0].id == 900
        assert fake_remote.issues[1].labels == ("idea",)
        assert result.operations[0] == "created octo/tools#1"

    async def test_pending_root_linked_under_parent(self, seeded):
        result = await push_tree(
            seeded, OWNER, REPO, Issue(title="Leaf"), None, parent_number=2
        )
        assert result.issue.number == 3
        assert seeded.issues[2].children == [3]

    async def test_closed_pending_issue(self, fake_remote):
        tree = Issue(title="Done already", close_state=CloseState(kind=CloseKind.CLOSED))
        await push_tree(fake_remote, OWNER, REPO, tree, None)
        assert fake_remote.issues[1].state == "closed"

    async def test_empty_pending_comment_dropped(self, seeded):
        remote = await _remote_tree(seeded)
        merged = remote.model_copy(
            update={"comments": remote.comments + (Comment(body="  \n"),)}
        )
        result = await push_tree(seeded, OWNER, REPO, merged, remote)
        assert seeded.calls == []
        assert len(result.issue.comments) == 2


class TestUpdate:
    async def test_field_updates(self, seeded):
        remote = await _remote_tree(seeded)
        merged = remote.model_copy(
            update={
                "title": "Root v2",
                "labels": ("bug",),
                "body": "New body",
                "blockers": BlockerSequence().add("wait for review"),
                "close_state": CloseState(kind=CloseKind.NOT_PLANNED),
            }
        )
        await push_tree(seeded, OWNER, REPO, merged, remote)
        assert seeded.writes() == [
            "update_issue_title",
            "update_issue_labels",
            "update_issue_body",
            "update_issue_state",
        ]
        assert seeded.issues[1].body == "New body\n\n# Blockers\n- wait for review"
        assert seeded.issues[1].state_reason == "not_planned"

    async def test_label_order_is_not_a_change(self, seeded):
        seeded.issues[1].labels = ("a", "b")
        remote = await _remote_tree(seeded)
        merged = remote.model_copy(update={"labels": ("b", "a")})
        await push_tree(seeded, OWNER, REPO, merged, remote)
        assert seeded.calls == []

    async def test_comment_edit_and_delete(self, seeded):
        remote = await _remote_tree(seeded)
        mine, theirs = remote.comments
        merged = remote.model_copy(
            update={"comments": (mine.model_copy(update={"body": "edited"}),)}
        )
        await push_tree(seeded, OWNER, REPO, merged, remote)
        # The other user's comment is never deleted.
        assert seeded.calls == [("update_comment", mine.id)]
        assert [c.body for c in seeded.issues[1].comments] == ["edited", "theirs"]

    async def test_unlink_removed_child(self, seeded):
        remote = await _remote_tree(seeded)
        merged = remote.model_copy(update={"children": ()})
        await push_tree(seeded, OWNER, REPO, merged, remote)
        assert seeded.calls == [("remove_sub_issue", 1, 2)]

    async def test_foreign_body_not_updated(self, fake_remote, caplog):
        fake_remote.add_issue("Theirs", body="their text", author="bob")
        remote = await _remote_tree(fake_remote)
        merged = remote.model_copy(update={"body": "my rewrite"})
        await push_tree(fake_remote, OWNER, REPO, merged, remote)
        assert fake_remote.calls == []
        assert "Not updating body" in caplog.text

    async def test_folded_child_not_pushed(self, seeded):
        seeded.issues[2].body = "child body"
        remote = await _remote_tree(seeded)
        folded = remote.children[0].model_copy(update={"body": "", "folded": True})
        merged = remote.model_copy(update={"children": (folded,)})
        await push_tree(seeded, OWNER, REPO, merged, remote)
        assert seeded.calls == []


class TestDuplicates:
    async def test_missing_target_aborts_before_writes(self, seeded):
        remote = await _remote_tree(seeded)
        child = remote.children[0].model_copy(
            update={"close_state": CloseState.duplicate(99)}
        )
        merged = remote.model_copy(
            update={
                "title": "Would be retitled",
                "comments": remote.comments + (Comment(body="new"),),
                "children": (child, Issue(title="Would be created")),
            }
        )
        with pytest.raises(ReferenceNotFoundError) as exc_info:
            await push_tree(seeded, OWNER, REPO, merged, remote)
        assert exc_info.value.number == 99
        assert exc_info.value.role == "Duplicate target"
        assert seeded.calls == []

    async def test_duplicate_closed_and_reported(self, seeded):
        seeded.add_issue("Original")
        remote = await _remote_tree(seeded)
        child = remote.children[0].model_copy(
            update={"close_state": CloseState.duplicate(3)}
        )
        merged = remote.model_copy(update={"children": (child,)})
        result = await push_tree(seeded, OWNER, REPO, merged, remote)
        assert seeded.calls == [("update_issue_state", 2, "closed")]
        assert seeded.issues[2].state_reason == "duplicate"
        assert result.duplicates == [(0,)]

    def test_prune(self):
        dup = Issue(title="d", close_state=CloseState.duplicate(1))
        keep = Issue(title="k")
        tree = Issue(title="r", children=(dup, keep, dup))
        assert prune_duplicates(tree, [(0,), (2,)]).children == (keep,)
        assert prune_duplicates(tree, [()]) is None
        assert prune_duplicates(tree, []) is tree
