"""Load settings from YAML files and the environment."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from authcache.config.models import AuthCacheSettings
from authcache.core.errors import ConfigError
from authcache.core.logging import get_logger


logger = get_logger(__name__)


def default_config_paths() -> list[Path]:
    """Config files searched when no explicit path is given, in order."""
    paths = [Path.cwd() / "authcache.yaml", Path.cwd() / ".authcache.yml"]

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    config_home = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    paths.extend(
        [
            config_home / "authcache" / "config.yaml",
            config_home / "authcache" / "config.yml",
        ]
    )
    return paths


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing configuration {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Error reading configuration {path}: {e}") from e

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigError(f"Invalid configuration format in {path}: expected a mapping")
    return raw_config


def load_settings(path: str | Path | None = None) -> AuthCacheSettings:
    """Load settings from a YAML file, with environment variables on top.

    Args:
        path: Explicit config file. When omitted the first existing file of
            ``default_config_paths()`` is used, or defaults if there is none.

    Returns:
        Validated settings

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    if path is not None:
        config_file = Path(path).expanduser()
        if not config_file.exists():
            raise ConfigError(f"Configuration file not found: {config_file}")
    else:
        config_file = next((p for p in default_config_paths() if p.is_file()), None)

    config_data: dict[str, Any] = {}
    if config_file is not None:
        config_data = _read_yaml(config_file)
        logger.debug("Loaded configuration from %s", config_file)
    else:
        logger.debug("No configuration file found, using defaults and environment")

    try:
        return AuthCacheSettings(**config_data)
    except ValidationError as e:
        source = config_file or "environment"
        raise ConfigError(f"Invalid configuration ({source}): {e}") from e
