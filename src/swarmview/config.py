"""Configuration for the swarmview session monitor.

Defaults live on the ``WatchConfig`` dataclass. An optional YAML file and
``SWARMVIEW_*`` environment variables override them, in that order.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "SWARMVIEW_"


def _default_projects_dir() -> str:
    return str(Path.home() / ".claude" / "projects")


@dataclass
class WatchConfig:
    """Configuration for session watching and state reconstruction.

    Attributes:
        max_markers: Timeline marker cap; oldest markers are evicted first (default: 1000).
        debounce_seconds: Window for coalescing file change notifications (default: 0.2).
        agent_active_window_seconds: Agent logs modified within this window get a
            full parse, older ones a reduced head/tail parse (default: 600).
        reduced_head_lines: Lines read from the start of an inactive agent log (default: 50).
        reduced_tail_lines: Lines read from the end of an inactive agent log (default: 20).
        fresh_window_seconds: Completed agents keep full detail for this long (default: 1800).
        stale_window_seconds: Unfinished agents without activity for this long are
            presented as stale (default: 1800).
        mission_max_chars: Truncation budget for the mission (default: 500).
        current_task_max_chars: Truncation budget for the orchestrator task (default: 200).
        thinking_max_chars: Truncation budget for the reasoning excerpt (default: 300).
        result_max_chars: Truncation budget for agent result summaries (default: 200).
        narration_ttl_seconds: Lifetime of cached narrations (default: 1800).
        narration_window_seconds: Content older than this is not narrated (default: 600).
        narration_model: Model used for narration.
        projects_dir: Directory scanned for session logs.
        host: Server bind address.
        port: Server port.
        log_dir: Directory for rotating log files.
        log_level: Console log level.
    """

    max_markers: int = 1000
    debounce_seconds: float = 0.2
    agent_active_window_seconds: float = 10 * 60
    reduced_head_lines: int = 50
    reduced_tail_lines: int = 20
    fresh_window_seconds: float = 30 * 60
    stale_window_seconds: float = 30 * 60
    mission_max_chars: int = 500
    current_task_max_chars: int = 200
    thinking_max_chars: int = 300
    result_max_chars: int = 200
    narration_ttl_seconds: float = 30 * 60
    narration_window_seconds: float = 10 * 60
    narration_model: str = "claude-haiku-4-5-20251001"
    projects_dir: str = field(default_factory=_default_projects_dir)
    host: str = "127.0.0.1"
    port: int = 3001
    log_dir: str = "/tmp/swarmview_logs"
    log_level: str = "INFO"

    def apply_overrides(self, overrides: dict[str, Any]) -> None:
        """Apply a mapping of field overrides, coercing to each field's type.

        Unknown keys are logged and ignored.
        """
        known = {f.name: f for f in fields(self)}
        for key, raw in overrides.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            current = getattr(self, key)
            try:
                value = type(current)(raw)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid value for {key}: {raw!r}") from e
            setattr(self, key, value)


def _env_overrides(environ: dict[str, str]) -> dict[str, str]:
    overrides = {}
    for name in (f.name for f in fields(WatchConfig)):
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_config(
    config_path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> WatchConfig:
    """Build a WatchConfig from defaults, an optional YAML file and the environment.

    Args:
        config_path: Optional YAML file with a flat mapping of field overrides.
            Falls back to ``SWARMVIEW_CONFIG`` when not given.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Populated WatchConfig.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        ValueError: If the YAML is invalid or a value can't be coerced.
    """
    environ = dict(os.environ if environ is None else environ)
    config = WatchConfig()

    path_value = config_path or environ.get(ENV_PREFIX + "CONFIG")
    if path_value:
        path = Path(path_value).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse configuration YAML: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file must contain a mapping: {path}")
        config.apply_overrides(data)
        logger.debug(f"Loaded configuration from {path}")

    config.apply_overrides(_env_overrides(environ))
    return config
