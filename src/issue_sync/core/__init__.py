"""Remote access shared by the fetcher, the push step and the CLI."""

from .async_utils import run_sync, run_sync_limited
from .client import GitHubClient
from .remote import RemoteClient, RemoteComment, RemoteIssue, RemoteSnapshot

__all__ = [
    "GitHubClient",
    "RemoteClient",
    "RemoteComment",
    "RemoteIssue",
    "RemoteSnapshot",
    "run_sync",
    "run_sync_limited",
]
