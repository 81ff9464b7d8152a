"""
Configuration loader — reads gobelt.yml into a Settings model.

Search order for the config file:
    --config flag  >  GOBELT_CONFIG env var  >  gobelt.yml walking up
    from cwd  >  $XDG_CONFIG_HOME/gobelt/gobelt.yml

A missing file is not an error: gobelt runs with defaults and an
empty registry. An unreadable or invalid file raises ConfigError.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

import yaml

from gobelt.core.models.settings import Settings

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "gobelt.yml"

ENV_PREFIX = "GOBELT"


class ConfigError(Exception):
    """Raised when gobelt configuration is invalid."""


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def user_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "gobelt"


def user_data_dir() -> Path:
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "gobelt"


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Locate gobelt.yml.

    Args:
        start_dir: Directory to start the upward search from (default: cwd).

    Returns:
        Path to the config file, or None if none exists.
    """
    env_path = os.environ.get(_k("CONFIG"))
    if env_path:
        return Path(env_path).expanduser()

    current = (start_dir or Path.cwd()).resolve()
    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    candidate = user_config_dir() / CONFIG_FILE
    if candidate.is_file():
        return candidate
    return None


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate configuration.

    Args:
        path: Explicit path to gobelt.yml. If None, searches for one.

    Returns:
        Validated Settings, with env overrides and goenv detection applied.

    Raises:
        ConfigError: If the file is unreadable or invalid.
    """
    if path is None:
        path = find_config_file()

    data: dict = {}
    if path is None:
        logger.debug("No %s found — using defaults", CONFIG_FILE)
    elif not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    else:
        logger.debug("Loading config from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")
        data = loaded

    explicit_go_cmd = "go_cmd" in data
    _apply_env_overrides(data)

    try:
        settings = Settings.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid gobelt configuration: {e}") from e

    if not explicit_go_cmd and shutil.which("goenv"):
        settings.go_cmd = ["goenv", "exec", "go"]
        logger.debug("goenv detected — using %s", " ".join(settings.go_cmd))

    logger.info("Loaded config with %d binaries", len(settings.binaries))
    return settings


def _apply_env_overrides(data: dict) -> None:
    concurrency = os.environ.get(_k("CONCURRENCY"))
    if concurrency:
        try:
            data["concurrency"] = int(concurrency)
        except ValueError:
            raise ConfigError(f"{_k('CONCURRENCY')} must be an integer, got {concurrency!r}")

    state_file = os.environ.get(_k("STATE_FILE"))
    if state_file:
        data["state_file"] = state_file


def state_path(settings: Settings) -> Path:
    """Where the update-check state is persisted."""
    if settings.state_file:
        return Path(settings.state_file).expanduser()
    return user_data_dir() / "state.json"
