import logging
import threading
from typing import Any

import requests

from ..config import Config
from ..errors import RemoteError, RemoteNotFoundError
from ..models import CloseState
from .remote import RemoteComment, RemoteIssue, RemoteUser

logger = logging.getLogger(__name__)

_API_VERSION = "2022-11-28"
_PAGE_SIZE = 100


class GitHubClient:
    """Synchronous GitHub REST client implementing ``RemoteClient``."""

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.api_url = config.api_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": _API_VERSION,
                "User-Agent": "issue-sync",
            }
        )
        if self.config.github_token:
            session.headers["Authorization"] = (
                f"Bearer {self.config.github_token}"
            )
        return session

    def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> requests.Response:
        """
        Send a request to the REST API and map failures to RemoteError.
        """
        url = path if path.startswith("http") else f"{self.api_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self._get_session().request(
                method, url, timeout=(10, 60), **kwargs
            )
        except requests.RequestException as exc:
            raise RemoteError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 404:
            raise RemoteNotFoundError(
                f"{method} {url}: not found", status=404
            )
        if not response.ok:
            raise RemoteError(
                f"{method} {url}: {response.status_code} {response.text[:200]}",
                status=response.status_code,
            )
        return response

    def _get_json(self, path: str, **kwargs: Any) -> Any:
        return self._request("GET", path, **kwargs).json()

    def _get_paginated(self, path: str) -> list[Any]:
        """Follow ``Link: rel=next`` headers and concatenate the pages."""
        items: list[Any] = []
        url: str | None = path
        params: dict[str, Any] | None = {"per_page": _PAGE_SIZE}
        while url:
            response = self._request("GET", url, params=params)
            items.extend(response.json())
            url = response.links.get("next", {}).get("url")
            params = None
        return items

    def _issue_path(self, owner: str, repo: str, number: int) -> str:
        return f"/repos/{owner}/{repo}/issues/{number}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_authenticated_user(self) -> str:
        """
        Login of the token's owner.
        """
        return RemoteUser.model_validate(self._get_json("/user")).login

    def fetch_issue(self, owner: str, repo: str, number: int) -> RemoteIssue:
        return RemoteIssue.model_validate(
            self._get_json(self._issue_path(owner, repo, number))
        )

    def fetch_comments(
        self, owner: str, repo: str, number: int
    ) -> list[RemoteComment]:
        path = self._issue_path(owner, repo, number) + "/comments"
        return [
            RemoteComment.model_validate(item)
            for item in self._get_paginated(path)
        ]

    def fetch_sub_issues(
        self, owner: str, repo: str, number: int
    ) -> list[RemoteIssue]:
        path = self._issue_path(owner, repo, number) + "/sub_issues"
        return [
            RemoteIssue.model_validate(item)
            for item in self._get_paginated(path)
        ]

    def fetch_parent_issue(
        self, owner: str, repo: str, number: int
    ) -> RemoteIssue | None:
        """
        Parent of a sub-issue, or None for a top-level issue.
        """
        path = self._issue_path(owner, repo, number) + "/parent"
        try:
            return RemoteIssue.model_validate(self._get_json(path))
        except RemoteNotFoundError:
            return None

    def find_issue_by_title(
        self, owner: str, repo: str, title: str
    ) -> int | None:
        """
        Number of the issue whose title matches exactly, if any.
        """
        query = f'repo:{owner}/{repo} is:issue in:title "{title}"'
        data = self._get_json("/search/issues", params={"q": query})
        for item in data.get("items", []):
            if item.get("title") == title:
                return int(item["number"])
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: tuple[str, ...] = (),
    ) -> RemoteIssue:
        """
        Create a new issue.

        Raises:
            ValueError: If title is empty
            RemoteError: If the API rejects the request
        """
        if not title.strip():
            raise ValueError("Title is required and cannot be empty")
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)
        response = self._request(
            "POST", f"/repos/{owner}/{repo}/issues", json=payload
        )
        created = RemoteIssue.model_validate(response.json())
        logger.info("Created %s/%s#%d", owner, repo, created.number)
        return created

    def _patch_issue(
        self, owner: str, repo: str, number: int, payload: dict[str, Any]
    ) -> None:
        self._request(
            "PATCH", self._issue_path(owner, repo, number), json=payload
        )

    def update_issue_state(
        self, owner: str, repo: str, number: int, state: CloseState
    ) -> None:
        payload: dict[str, Any] = {"state": state.remote_state()}
        reason = state.state_reason()
        payload["state_reason"] = reason if reason else "reopened"
        self._patch_issue(owner, repo, number, payload)

    def update_issue_body(
        self, owner: str, repo: str, number: int, body: str
    ) -> None:
        self._patch_issue(owner, repo, number, {"body": body})

    def update_issue_title(
        self, owner: str, repo: str, number: int, title: str
    ) -> None:
        self._patch_issue(owner, repo, number, {"title": title})

    def update_issue_labels(
        self, owner: str, repo: str, number: int, labels: tuple[str, ...]
    ) -> None:
        self._patch_issue(owner, repo, number, {"labels": list(labels)})

    def create_comment(
        self, owner: str, repo: str, number: int, body: str
    ) -> RemoteComment:
        response = self._request(
            "POST",
            self._issue_path(owner, repo, number) + "/comments",
            json={"body": body},
        )
        return RemoteComment.model_validate(response.json())

    def update_comment(
        self, owner: str, repo: str, comment_id: int, body: str
    ) -> None:
        self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/issues/comments/{comment_id}",
            json={"body": body},
        )

    def delete_comment(self, owner: str, repo: str, comment_id: int) -> None:
        self._request(
            "DELETE", f"/repos/{owner}/{repo}/issues/comments/{comment_id}"
        )

    def _issue_id(self, owner: str, repo: str, number: int) -> int:
        issue = self.fetch_issue(owner, repo, number)
        if issue.id is None:
            raise RemoteError(f"{owner}/{repo}#{number} has no id")
        return issue.id

    def add_sub_issue(
        self, owner: str, repo: str, parent: int, child: int
    ) -> None:
        """
        Link issue *child* under *parent* (the API wants the child's id).
        """
        self._request(
            "POST",
            self._issue_path(owner, repo, parent) + "/sub_issues",
            json={"sub_issue_id": self._issue_id(owner, repo, child)},
        )

    def remove_sub_issue(
        self, owner: str, repo: str, parent: int, child: int
    ) -> None:
        self._request(
            "DELETE",
            self._issue_path(owner, repo, parent) + "/sub_issue",
            json={"sub_issue_id": self._issue_id(owner, repo, child)},
        )
