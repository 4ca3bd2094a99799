"""Schema of the YAML configuration files.

Each top-level YAML key maps to one section model.  All fields are optional
so that an empty file (or no file at all) is valid; environment variables
and CLI flags fill in the rest in ``config.load_config``.

Usage:
    from issue_sync.config_loader import load_hierarchical_config
    from issue_sync.config_schema import build_config

    unified = build_config(load_hierarchical_config())
    unified.github.max_parallel_requests
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitHubConfig(BaseModel):
    """Remote API settings."""

    token: str | None = Field(
        default=None, description="Personal access token"
    )
    api_url: str = Field(
        default="https://api.github.com", description="REST API base URL"
    )
    max_parallel_requests: int = Field(
        default=4,
        ge=1,
        le=100,
        description="Maximum concurrent API requests (1-100)",
    )

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Where issue files and tool state live."""

    data_root: str | None = Field(
        default=None, description="Root of the issues tree"
    )
    state_dir: str | None = Field(
        default=None, description="Directory for conflict records"
    )
    dialect: Literal["md", "typ"] = Field(
        default="md", description="Extension of newly written files"
    )

    model_config = {"frozen": True}


class OpenConfig(BaseModel):
    """Defaults for the ``open`` command."""

    editor: str | None = Field(
        default=None, description="Editor command; falls back to $EDITOR"
    )
    render_closed: bool = Field(
        default=False,
        description="Write the content of closed sub-issues",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Log level and an extra log file for ``cli`` runs."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Root log level"
    )
    file: str | None = Field(
        default=None, description="Also append records to this file"
    )

    model_config = {"frozen": True}


class UnifiedConfig(BaseModel):
    """All config sections; ``UnifiedConfig()`` is always valid."""

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    open: OpenConfig = Field(default_factory=OpenConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Validate the merged dict from ``load_hierarchical_config()``.

    Raises:
        pydantic.ValidationError: If a value has the wrong type or range.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)
