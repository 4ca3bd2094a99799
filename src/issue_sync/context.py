"""Runtime context threaded through commands.

``AppContext`` bundles the resolved ``Config`` and a clock.  It is built
once at start-up by ``build_context`` (which follows the configuration
precedence CLI > environment > ``.env`` > YAML > defaults) and passed down
explicitly; there is no process-wide copy.  The clock stamps conflict
records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from dotenv import load_dotenv

from .codec import Dialect
from .config import Config, load_config
from .config_loader import load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .conflict import ConflictTracker

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AppContext:
    """Settings and clock for one process.

    Attributes:
        config: Resolved configuration.
        clock: Returns the current time; tests inject a fixed one.
        settings: The validated YAML sections (logging etc.).
    """

    config: Config
    clock: Callable[[], datetime] = utc_now
    settings: UnifiedConfig = field(default_factory=UnifiedConfig)

    def now(self) -> datetime:
        return self.clock()

    @property
    def dialect(self) -> Dialect:
        return Dialect.from_extension(self.config.dialect)

    @property
    def fold_hint(self) -> bool:
        """Whether fold markers should name the flag that unfolds them."""
        return not self.config.render_closed

    def conflict_tracker(self) -> ConflictTracker:
        return ConflictTracker(self.config.state_dir, clock=self.clock)


def build_context(
    overrides: dict[str, Any] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> AppContext:
    """Resolve configuration from all sources into a new context.

    Args:
        overrides: CLI values (``token``, ``data_root``, ``state_dir``,
            ``dialect``, ``render_closed``, ``debug``).
        clock: Clock to use instead of the system time.

    Raises:
        ValueError: If a configuration value is invalid.
    """
    load_dotenv()
    settings = build_config(load_hierarchical_config())
    overrides = overrides or {}
    config = load_config(
        token=overrides.get("token"),
        data_root=overrides.get("data_root"),
        state_dir=overrides.get("state_dir"),
        dialect=overrides.get("dialect"),
        render_closed=overrides.get("render_closed", False),
        debug=overrides.get("debug", False),
        unified=settings,
    )
    logger.debug(
        "Data root %s, state dir %s", config.data_root, config.state_dir
    )
    return AppContext(config=config, clock=clock or utc_now, settings=settings)
