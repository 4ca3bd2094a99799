"""Shared pytest fixtures for issue-sync tests."""

import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone

import pytest
from dotenv import load_dotenv

from issue_sync.config import Config
from issue_sync.context import AppContext
from issue_sync.core.async_utils import reset_semaphore
from issue_sync.core.remote import (
    RemoteComment,
    RemoteIssue,
    RemoteLabel,
    RemoteUser,
)
from issue_sync.errors import RemoteError, RemoteNotFoundError
from issue_sync.models import CloseState

load_dotenv()

OWNER = "octo"
REPO = "tools"
ME = "alice"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a real GitHub token",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring the real GitHub API"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# In-memory remote
# ---------------------------------------------------------------------------


@dataclass
class FakeIssue:
    number: int
    title: str
    body: str = ""
    state: str = "open"
    state_reason: str | None = None
    labels: tuple[str, ...] = ()
    author: str = ME
    comments: list[RemoteComment] = field(default_factory=list)
    children: list[int] = field(default_factory=list)
    parent: int | None = None

    def payload(self, owner: str, repo: str) -> RemoteIssue:
        return RemoteIssue(
            number=self.number,
            id=self.number + 10_000,
            title=self.title,
            body=self.body,
            state=self.state,
            state_reason=self.state_reason,
            labels=tuple(RemoteLabel(name=name) for name in self.labels),
            user=RemoteUser(login=self.author),
            html_url=f"https://github.com/{owner}/{repo}/issues/{self.number}",
        )


class FakeRemote:
    """``RemoteClient`` backed by dicts; records every write in ``calls``."""

    def __init__(self, owner: str = OWNER, repo: str = REPO, user: str = ME):
        self.owner = owner
        self.repo = repo
        self.user = user
        self.issues: dict[int, FakeIssue] = {}
        self.calls: list[tuple] = []
        self.fail_fetch: set[int] = set()
        self._next_number = 1
        self._next_comment = 900

    # -- setup helpers ---------------------------------------------------

    def add_issue(self, title: str, parent: int | None = None, **kwargs) -> FakeIssue:
        number = kwargs.pop("number", None) or self._next_number
        self._next_number = max(self._next_number, number) + 1
        issue = FakeIssue(number=number, title=title, **kwargs)
        self.issues[number] = issue
        if parent is not None:
            self.issues[parent].children.append(number)
            issue.parent = parent
        return issue

    def add_comment(self, number: int, body: str, author: str = ME) -> RemoteComment:
        comment = RemoteComment(
            id=self._next_comment, body=body, user=RemoteUser(login=author)
        )
        self._next_comment += 1
        self.issues[number].comments.append(comment)
        return comment

    def writes(self) -> list[str]:
        return [call[0] for call in self.calls]

    def _get(self, number: int) -> FakeIssue:
        if number in self.fail_fetch:
            raise RemoteError(f"#{number}: 502 Bad Gateway", status=502)
        try:
            return self.issues[number]
        except KeyError:
            raise RemoteNotFoundError(f"#{number}: not found", status=404) from None

    # -- reads -----------------------------------------------------------

    def fetch_authenticated_user(self) -> str:
        return self.user

    def fetch_issue(self, owner, repo, number):
        return self._get(number).payload(owner, repo)

    def fetch_comments(self, owner, repo, number):
        return list(self._get(number).comments)

    def fetch_sub_issues(self, owner, repo, number):
        return [
            self.issues[child].payload(owner, repo)
            for child in self._get(number).children
        ]

    def fetch_parent_issue(self, owner, repo, number):
        parent = self._get(number).parent
        if parent is None:
            return None
        return self.issues[parent].payload(owner, repo)

    def find_issue_by_title(self, owner, repo, title):
        for issue in self.issues.values():
            if issue.title == title:
                return issue.number
        return None

    # -- writes ----------------------------------------------------------

    def create_issue(self, owner, repo, title, body, labels=()):
        issue = self.add_issue(title, body=body, labels=tuple(labels))
        self.calls.append(("create_issue", issue.number, title))
        return issue.payload(owner, repo)

    def update_issue_state(self, owner, repo, number, state: CloseState):
        issue = self._get(number)
        issue.state = state.remote_state()
        issue.state_reason = state.state_reason()
        self.calls.append(("update_issue_state", number, issue.state))

    def update_issue_body(self, owner, repo, number, body):
        self._get(number).body = body
        self.calls.append(("update_issue_body", number))

    def update_issue_title(self, owner, repo, number, title):
        self._get(number).title = title
        self.calls.append(("update_issue_title", number, title))

    def update_issue_labels(self, owner, repo, number, labels):
        self._get(number).labels = tuple(labels)
        self.calls.append(("update_issue_labels", number, tuple(labels)))

    def create_comment(self, owner, repo, number, body):
        comment = self.add_comment(number, body, author=self.user)
        self.calls.append(("create_comment", number, comment.id))
        return comment

    def _find_comment(self, comment_id):
        for issue in self.issues.values():
            for index, comment in enumerate(issue.comments):
                if comment.id == comment_id:
                    return issue, index
        raise RemoteNotFoundError(f"comment {comment_id}: not found", status=404)

    def update_comment(self, owner, repo, comment_id, body):
        issue, index = self._find_comment(comment_id)
        issue.comments[index] = issue.comments[index].model_copy(
            update={"body": body}
        )
        self.calls.append(("update_comment", comment_id))

    def delete_comment(self, owner, repo, comment_id):
        issue, index = self._find_comment(comment_id)
        del issue.comments[index]
        self.calls.append(("delete_comment", comment_id))

    def add_sub_issue(self, owner, repo, parent, child):
        self._get(parent).children.append(child)
        self._get(child).parent = parent
        self.calls.append(("add_sub_issue", parent, child))

    def remove_sub_issue(self, owner, repo, parent, child):
        self._get(parent).children.remove(child)
        self._get(child).parent = None
        self.calls.append(("remove_sub_issue", parent, child))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_config(tmp_path):
    """Config rooted in a temporary directory."""
    return Config(
        data_root=tmp_path / "data",
        state_dir=tmp_path / "state",
        github_token="ghp_test",
        editor="true",
    )


@pytest.fixture
def app_context(mock_config):
    return AppContext(config=mock_config, clock=lambda: FIXED_NOW)


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture(autouse=True)
def _no_semaphore():
    yield
    reset_semaphore()


@pytest.fixture
def git_repo(mock_config, monkeypatch):
    """Initialise a git repository at the issues directory."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    for var, value in {
        "GIT_AUTHOR_NAME": "Test",
        "GIT_AUTHOR_EMAIL": "test@example.com",
        "GIT_COMMITTER_NAME": "Test",
        "GIT_COMMITTER_EMAIL": "test@example.com",
        "GIT_CONFIG_NOSYSTEM": "1",
    }.items():
        monkeypatch.setenv(var, value)
    issues_dir = mock_config.issues_dir
    issues_dir.mkdir(parents=True)
    subprocess.run(
        ["git", "init", "--quiet"], cwd=issues_dir, check=True
    )
    subprocess.run(
        ["git", "config", "commit.gpgsign", "false"], cwd=issues_dir, check=True
    )
    return issues_dir
