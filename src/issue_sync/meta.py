"""Per-project metadata (``{project_dir}/.meta.json``).

The file records whether a project is virtual (no remote counterpart) and
the next locally allocated issue number.  It is created lazily: loading a
project without the file yields defaults without touching the disk.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from .errors import StorageError
from .file_handler import read_json, write_json_atomic
from .models import ProjectMeta

logger = logging.getLogger(__name__)

META_FILENAME = ".meta.json"


def meta_path(project: Path) -> Path:
    return project / META_FILENAME


def load_project_meta(project: Path, owner: str, repo: str) -> ProjectMeta:
    """Load the metadata of a project, or defaults when absent.

    Raises:
        StorageError: If the file exists but is not valid metadata.
    """
    data = read_json(meta_path(project))
    if data is None:
        return ProjectMeta(owner=owner, repo=repo)
    try:
        return ProjectMeta.model_validate(data)
    except ValidationError as exc:
        raise StorageError(
            f"Invalid project metadata in {meta_path(project)}: {exc}"
        ) from exc


def save_project_meta(project: Path, meta: ProjectMeta) -> None:
    write_json_atomic(meta_path(project), meta.model_dump())


def is_virtual_project(project: Path, owner: str, repo: str) -> bool:
    return load_project_meta(project, owner, repo).virtual_project


def ensure_virtual_project(project: Path, owner: str, repo: str) -> ProjectMeta:
    """Mark a project as virtual, creating its metadata if needed.

    Raises:
        StorageError: If the project already holds remote issues.
    """
    meta = load_project_meta(project, owner, repo)
    if meta.virtual_project:
        return meta
    if meta_path(project).exists() or any(project.glob("[0-9]*")):
        raise StorageError(
            f"{owner}/{repo} already tracks remote issues; it cannot "
            "become a virtual project"
        )
    meta = meta.model_copy(update={"virtual_project": True})
    save_project_meta(project, meta)
    logger.info("Created virtual project %s/%s", owner, repo)
    return meta


def allocate_virtual_issue_number(project: Path, owner: str, repo: str) -> int:
    """Reserve the next issue number of a virtual project.

    Raises:
        StorageError: If the project is not virtual.
    """
    meta = load_project_meta(project, owner, repo)
    if not meta.virtual_project:
        raise StorageError(
            f"{owner}/{repo} is not a virtual project; issue numbers come "
            "from the remote"
        )
    number = max(meta.next_virtual_issue_number, 1)
    save_project_meta(
        project,
        meta.model_copy(update={"next_virtual_issue_number": number + 1}),
    )
    return number
