"""
Configuration loader for ralph-dev.

Settings come from three places, later ones winning:
  1. built-in defaults (lib/constants.py)
  2. <workspace>/.ralph-dev/config.env
  3. RALPH_DEV_* environment variables
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from ralphdev.lib import constants, envparse

logger = logging.getLogger(__name__)

ENV_PREFIX = "RALPH_DEV_"


@dataclass
class Config:
    """Resolved settings for one workspace."""
    workspace: Path
    lock_timeout: float = constants.LOCK_TIMEOUT_SECONDS
    use_lock: bool = True
    retry_max_attempts: int = constants.RETRY_MAX_ATTEMPTS
    retry_initial_delay: float = constants.RETRY_INITIAL_DELAY
    retry_max_delay: float = constants.RETRY_MAX_DELAY
    retry_backoff_multiplier: float = constants.RETRY_BACKOFF_MULTIPLIER
    cb_failure_threshold: int = constants.CB_FAILURE_THRESHOLD
    cb_timeout_ms: int = constants.CB_TIMEOUT_MS
    cb_success_threshold: int = constants.CB_SUCCESS_THRESHOLD

    @property
    def state_dir(self) -> Path:
        return self.workspace / constants.STATE_DIR_NAME

    @property
    def tasks_dir(self) -> Path:
        return self.state_dir / constants.TASKS_DIR_NAME


# key (without prefix) -> (field name, parser)
_FIELDS = {
    "LOCK_TIMEOUT": ("lock_timeout", float),
    "USE_LOCK": ("use_lock", lambda v: v.strip().lower() in ("1", "true", "yes", "on")),
    "RETRY_MAX_ATTEMPTS": ("retry_max_attempts", int),
    "RETRY_INITIAL_DELAY": ("retry_initial_delay", float),
    "RETRY_MAX_DELAY": ("retry_max_delay", float),
    "RETRY_BACKOFF_MULTIPLIER": ("retry_backoff_multiplier", float),
    "CB_FAILURE_THRESHOLD": ("cb_failure_threshold", int),
    "CB_TIMEOUT_MS": ("cb_timeout_ms", int),
    "CB_SUCCESS_THRESHOLD": ("cb_success_threshold", int),
}


def resolve_workspace(explicit: str | None = None, environ: Mapping[str, str] | None = None) -> Path:
    """Workspace root from --workspace, RALPH_DEV_WORKSPACE, or the cwd."""
    environ = os.environ if environ is None else environ
    raw = explicit or environ.get(f"{ENV_PREFIX}WORKSPACE") or os.getcwd()
    return Path(raw).expanduser().resolve()


def _apply(config: Config, values: Mapping[str, str], source: str) -> None:
    for key, (field_name, parse) in _FIELDS.items():
        if key not in values:
            continue
        raw = values[key]
        try:
            setattr(config, field_name, parse(raw))
        except ValueError:
            logger.warning(f"Ignoring invalid {key}={raw!r} from {source}")


def load_config(workspace: Path, environ: Mapping[str, str] | None = None) -> Config:
    """Load Config for `workspace`, merging config.env and environment overrides."""
    environ = os.environ if environ is None else environ
    config = Config(workspace=Path(workspace))

    config_path = config.state_dir / constants.CONFIG_FILE
    if config_path.exists():
        try:
            file_values = envparse.load_env(config_path)
        except ValueError as e:
            logger.warning(f"Ignoring {config_path}: {e}")
        else:
            # Keys may be written with or without the RALPH_DEV_ prefix
            _apply(config, {k.removeprefix(ENV_PREFIX): v for k, v in file_values.items()}, str(config_path))

    env_values = {k[len(ENV_PREFIX):]: v for k, v in environ.items() if k.startswith(ENV_PREFIX)}
    _apply(config, env_values, "environment")

    if config.retry_max_attempts < 1:
        logger.warning(f"RETRY_MAX_ATTEMPTS must be >= 1, got {config.retry_max_attempts}; using 1")
        config.retry_max_attempts = 1

    return config
