"""Config loading/saving and validation.

Settings live in ~/.terminaut/config.json. A missing file means defaults.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path

import dacite

from .exceptions import (
    ConfigLoadError,
    ConfigSaveError,
    ConfigValidationError,
    record_error,
)
from .models import TERMINAUT_DIR, AppConfig, model_to_dict

logger = logging.getLogger(__name__)

# Configuration file location
CONFIG_PATH = TERMINAUT_DIR / "config.json"


def get_config_path() -> Path:
    """Get the configuration file path."""
    return CONFIG_PATH


def validate_config(config: AppConfig) -> None:
    """
    Check values that the schema alone cannot.

    Raises:
        ConfigValidationError: If a timing is not a positive finite number
            or the assistant command is empty.
    """
    for name in ("poll_interval", "rewatch_delay"):
        value = getattr(config, name)
        if not math.isfinite(value) or value <= 0:
            raise ConfigValidationError(
                f"{name} must be positive",
                field=name,
                value=value,
                expected="positive number of seconds",
            )

    if not config.assistant_command.strip():
        raise ConfigValidationError(
            "assistant_command must not be empty",
            field="assistant_command",
            expected="executable name",
        )


def load_config(path: str | Path | None = None) -> AppConfig:
    """
    Load application configuration.

    Args:
        path: Config file to read, defaults to ~/.terminaut/config.json

    Returns:
        AppConfig loaded from the file, or defaults if it does not exist

    Raises:
        ConfigLoadError: If the file exists but cannot be read or parsed.
        ConfigValidationError: If the contents do not match the schema.
    """
    config_path = Path(path) if path is not None else CONFIG_PATH

    if not config_path.exists():
        logger.debug("No config found at %s, using defaults", config_path)
        return AppConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
        logger.debug("Loaded config from %s", config_path)
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in config file: %s", e)
        record_error(e)
        raise ConfigLoadError(
            f"Invalid JSON in config file at line {e.lineno}",
            file_path=str(config_path),
            context={"line": e.lineno, "column": e.colno},
            cause=e,
        ) from e
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Failed to read config file: %s", e)
        record_error(e)
        raise ConfigLoadError(
            "Failed to read config file",
            file_path=str(config_path),
            cause=e,
        ) from e

    if not isinstance(data, dict):
        raise ConfigValidationError(
            "Config file must contain a JSON object",
            value=type(data).__name__,
            expected="object",
            context={"file_path": str(config_path)},
        )

    try:
        config = dacite.from_dict(
            data_class=AppConfig,
            data=data,
            config=dacite.Config(cast=[float]),
        )
    except (dacite.DaciteError, ValueError, TypeError) as e:
        logger.error("Config schema validation failed: %s", e)
        record_error(e)
        raise ConfigValidationError(
            f"Config schema validation failed: {e}",
            context={"file_path": str(config_path)},
            cause=e,
        ) from e

    validate_config(config)
    return config


def save_config(config: AppConfig, path: str | Path | None = None) -> None:
    """
    Save application configuration, creating the directory if needed.

    Raises:
        ConfigSaveError: If the config cannot be saved.
    """
    config_path = Path(path) if path is not None else CONFIG_PATH

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Failed to create config directory: %s", e)
        record_error(e)
        raise ConfigSaveError(
            f"Failed to create config directory: {config_path.parent}",
            file_path=str(config_path.parent),
            cause=e,
        ) from e

    try:
        data = model_to_dict(config)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        logger.debug("Saved config to %s", config_path)
    except OSError as e:
        logger.error("Failed to write config file: %s", e)
        record_error(e)
        raise ConfigSaveError(
            "Failed to write config file",
            file_path=str(config_path),
            cause=e,
        ) from e
    except (TypeError, ValueError) as e:
        logger.error("Failed to serialize config to JSON: %s", e)
        record_error(e)
        raise ConfigSaveError(
            "Failed to serialize config to JSON",
            file_path=str(config_path),
            cause=e,
        ) from e
