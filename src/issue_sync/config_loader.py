"""
YAML configuration files for issue_sync.

Up to three files are read, most specific first:

1. ``$ISSUE_SYNC_CONFIG``
2. ``./.issue_sync/config.yml`` (project)
3. ``~/.config/issue_sync/config.yml`` (user)

A top-level section (``github``, ``storage``, ``open``, ``logging``) in a
more specific file replaces the same section from less specific ones.
String values may reference the environment as ``${VAR}`` or
``${VAR:-fallback}``.

Usage:
    from issue_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ISSUE_SYNC_CONFIG"
PROJECT_CONFIG = Path(".issue_sync") / "config.yml"
USER_CONFIG = Path(".config") / "issue_sync" / "config.yml"

_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<fallback>.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-fallback}`` in *value*.

    Unset and empty variables both take the fallback (``""`` without one).
    An unterminated ``${`` is left alone.
    """
    return _REFERENCE.sub(
        lambda m: os.environ.get(m["name"]) or m["fallback"] or "", value
    )


def _expand(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, list):
        return [_expand(item) for item in node]
    if isinstance(node, dict):
        return {key: _expand(item) for key, item in node.items()}
    return node


def discover_config_files() -> list[Path]:
    """Config files that exist, most specific first."""
    candidates = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    candidates += [Path.cwd() / PROJECT_CONFIG, Path.home() / USER_CONFIG]
    return [path for path in candidates if path.exists()]


def _read_sections(path: Path) -> dict[str, Any]:
    logger.debug("Loading config: %s", path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError):
        logger.error("Failed to load config file %s", path)
        raise
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Config file %s has non-dict root (%s), skipping",
            path,
            type(data).__name__,
        )
        return {}
    return data


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered file into one raw settings dict.

    Interpolation runs after merging, so a less specific file never
    contributes a value that a more specific one replaced.  No files
    means ``{}``.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        merged.update(_read_sections(path))
    return _expand(merged)
