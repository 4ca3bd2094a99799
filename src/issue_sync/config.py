"""Runtime configuration for issue-sync.

Reads settings from CLI args, environment variables, .env files and the
YAML config files.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GITHUB_TOKEN: Personal access token (optional for read-only use)
    ISSUE_SYNC_DATA_ROOT: Root directory holding ``issues/`` and ``blockers/``
    ISSUE_SYNC_STATE_DIR: Directory for conflict records
    ISSUE_SYNC_DIALECT: ``md`` or ``typ`` (default: md)
    ISSUE_SYNC_MAX_PARALLEL_REQUESTS: Max concurrent API requests (default: 4)
    EDITOR: Editor launched by ``open``
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from .config_schema import UnifiedConfig

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


def _xdg_dir(env_var: str, fallback: str) -> Path:
    base = os.getenv(env_var) or str(Path.home() / fallback)
    return Path(base).expanduser() / "issue_sync"


@dataclass
class Config:
    data_root: Path
    state_dir: Path
    github_token: str | None = None
    api_url: str = DEFAULT_API_URL
    dialect: str = "md"
    editor: str = "vi"
    render_closed: bool = False
    debug: bool = False
    max_parallel_requests: int = 4

    @property
    def issues_dir(self) -> Path:
        return self.data_root / "issues"

    @property
    def blockers_dir(self) -> Path:
        return self.data_root / "blockers"


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If the API URL, dialect or parallelism is invalid.
    """
    config.api_url = config.api_url.strip()
    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid GitHub API URL '{config.api_url}': must start with http:// or https://"
        )
    if not urlparse(config.api_url).hostname:
        raise ValueError(
            f"Invalid GitHub API URL '{config.api_url}': URL must include a hostname"
        )
    config.api_url = config.api_url.removesuffix("/")

    if config.dialect not in ("md", "typ"):
        raise ValueError(
            f"Invalid dialect '{config.dialect}': must be 'md' or 'typ'. "
            "Set ISSUE_SYNC_DIALECT or storage.dialect in config.yml."
        )

    if not (1 <= config.max_parallel_requests <= 100):
        raise ValueError(
            f"Invalid max_parallel_requests {config.max_parallel_requests}: "
            "must be a number between 1 and 100"
        )

    if not config.github_token:
        logger.debug(
            "No GitHub token configured; only public reads will succeed"
        )


def load_config(
    token: str | None = None,
    data_root: str | None = None,
    state_dir: str | None = None,
    dialect: str | None = None,
    render_closed: bool = False,
    debug: bool = False,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML section value > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        token: Override GitHub token.
        data_root: Override data root directory.
        state_dir: Override state directory.
        dialect: Override dialect for new files.
        render_closed: Unfold closed sub-issues (CLI flag).
        debug: Enable debug logging (CLI flag).
        unified: Validated YAML config; defaults when ``None``.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is invalid after checking all sources.
    """
    yaml_cfg = unified or UnifiedConfig()

    final_token = (
        token or os.getenv("GITHUB_TOKEN") or yaml_cfg.github.token
    )

    root = (
        data_root
        or os.getenv("ISSUE_SYNC_DATA_ROOT")
        or yaml_cfg.storage.data_root
    )
    final_root = (
        Path(root).expanduser()
        if root
        else _xdg_dir("XDG_DATA_HOME", ".local/share")
    )

    state = (
        state_dir
        or os.getenv("ISSUE_SYNC_STATE_DIR")
        or yaml_cfg.storage.state_dir
    )
    final_state = (
        Path(state).expanduser()
        if state
        else _xdg_dir("XDG_STATE_HOME", ".local/state")
    )

    final_dialect = (
        dialect or os.getenv("ISSUE_SYNC_DIALECT") or yaml_cfg.storage.dialect
    ).lower().lstrip(".")

    editor = yaml_cfg.open.editor or os.getenv("EDITOR") or "vi"

    max_parallel_raw = os.getenv("ISSUE_SYNC_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            final_max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ValueError(
                f"Invalid ISSUE_SYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            ) from None
    else:
        final_max_parallel = yaml_cfg.github.max_parallel_requests

    config = Config(
        data_root=final_root,
        state_dir=final_state,
        github_token=final_token,
        api_url=yaml_cfg.github.api_url,
        dialect=final_dialect,
        editor=editor,
        render_closed=render_closed or yaml_cfg.open.render_closed,
        debug=debug,
        max_parallel_requests=final_max_parallel,
    )

    validate_config(config)

    return config
