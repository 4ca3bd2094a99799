"""Remote issue tracker interface.

The sync engine only talks to the remote through ``RemoteClient``.  The
shipped implementation is ``GitHubClient`` (REST over ``requests``); tests
substitute an in-memory fake.  Methods are synchronous and are bridged to
the event loop with ``run_sync_limited``.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel

from ..models import CloseState


class RemoteUser(BaseModel):
    login: str

    model_config = {"frozen": True, "extra": "ignore"}


class RemoteLabel(BaseModel):
    name: str

    model_config = {"frozen": True, "extra": "ignore"}


class RemoteIssue(BaseModel):
    """Subset of the GitHub issue payload the tool uses.

    Attributes:
        number: Issue number within the repository.
        id: Global database id (needed by the sub-issues API).
        state: ``"open"`` or ``"closed"``.
        state_reason: ``completed``, ``not_planned``, ``duplicate`` or
            ``reopened`` when set.
    """

    number: int
    title: str
    body: str | None = None
    state: str = "open"
    state_reason: str | None = None
    labels: tuple[RemoteLabel, ...] = ()
    user: RemoteUser | None = None
    id: int | None = None
    html_url: str | None = None

    model_config = {"frozen": True, "extra": "ignore"}

    @property
    def author(self) -> str | None:
        return self.user.login if self.user else None

    @property
    def label_names(self) -> tuple[str, ...]:
        return tuple(label.name for label in self.labels)

    @property
    def close_state(self) -> CloseState:
        return CloseState.from_remote(self.state, self.state_reason)


class RemoteComment(BaseModel):
    id: int
    body: str | None = None
    user: RemoteUser | None = None

    model_config = {"frozen": True, "extra": "ignore"}

    @property
    def author(self) -> str | None:
        return self.user.login if self.user else None


class RemoteSnapshot(BaseModel):
    """One node as fetched: the issue, its comments and its direct children."""

    issue: RemoteIssue
    comments: tuple[RemoteComment, ...] = ()
    sub_issues: tuple[RemoteIssue, ...] = ()

    model_config = {"frozen": True}


class RemoteClient(Protocol):
    """Operations the sync engine needs from an issue tracker.

    All methods raise ``RemoteError`` on failure and ``RemoteNotFoundError``
    when the addressed object does not exist.
    """

    def fetch_authenticated_user(self) -> str: ...

    def fetch_issue(self, owner: str, repo: str, number: int) -> RemoteIssue: ...

    def fetch_comments(
        self, owner: str, repo: str, number: int
    ) -> list[RemoteComment]: ...

    def fetch_sub_issues(
        self, owner: str, repo: str, number: int
    ) -> list[RemoteIssue]: ...

    def fetch_parent_issue(
        self, owner: str, repo: str, number: int
    ) -> RemoteIssue | None: ...

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: tuple[str, ...] = (),
    ) -> RemoteIssue: ...

    def update_issue_state(
        self, owner: str, repo: str, number: int, state: CloseState
    ) -> None: ...

    def update_issue_body(
        self, owner: str, repo: str, number: int, body: str
    ) -> None: ...

    def update_issue_title(
        self, owner: str, repo: str, number: int, title: str
    ) -> None: ...

    def update_issue_labels(
        self, owner: str, repo: str, number: int, labels: tuple[str, ...]
    ) -> None: ...

    def create_comment(
        self, owner: str, repo: str, number: int, body: str
    ) -> RemoteComment: ...

    def update_comment(
        self, owner: str, repo: str, comment_id: int, body: str
    ) -> None: ...

    def delete_comment(self, owner: str, repo: str, comment_id: int) -> None: ...

    def add_sub_issue(
        self, owner: str, repo: str, parent: int, child: int
    ) -> None: ...

    def remove_sub_issue(
        self, owner: str, repo: str, parent: int, child: int
    ) -> None: ...

    def find_issue_by_title(
        self, owner: str, repo: str, title: str
    ) -> int | None: ...

