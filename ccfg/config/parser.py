"""Configuration file parsing utilities."""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ccfg.config.schemas import RegistryFile, ToolConfig


class ConfigError(Exception):
    """Error loading or parsing configuration."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def load_json(path: Path) -> dict[str, Any]:
    """Load and parse a JSON file whose root must be an object.

    Args:
        path: Path to the JSON file

    Returns:
        Parsed JSON as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e

    if not isinstance(result, dict):
        raise ConfigError(f"JSON file must contain an object: {path}", path)
    return result


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = yaml.safe_load(f)
            if result is None:
                return {}
            if not isinstance(result, dict):
                raise ConfigError(f"YAML file must contain a mapping: {path}", path)
            return result
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e


def load_settings(path: Path) -> dict[str, Any]:
    """Load a Claude settings document.

    Args:
        path: Path to settings.json or settings.local.json

    Returns:
        The parsed document, or an empty dict if the file does not exist

    Raises:
        ConfigError: If the file exists but is not a JSON object
    """
    if not path.exists():
        return {}
    if path.stat().st_size == 0:
        return {}
    return load_json(path)


def load_tool_config(path: Path) -> ToolConfig:
    """Load tool configuration from ccfg.yaml.

    Args:
        path: Path to the config file

    Returns:
        Parsed ToolConfig, or defaults if the file does not exist

    Raises:
        ConfigError: If the file exists but is invalid
    """
    if not path.exists():
        return ToolConfig()

    data = load_yaml(path)

    try:
        config = ToolConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid tool config: {e}", path) from e

    # Relative paths are relative to the config file
    updates: dict[str, Path] = {}
    for field in ("backup_dir", "registry_file"):
        value = getattr(config, field)
        if value is not None:
            value = value.expanduser()
            updates[field] = value if value.is_absolute() else path.parent / value
    return config.model_copy(update=updates)


def load_registry_file(path: Path) -> RegistryFile:
    """Load and validate a registry table.

    Args:
        path: Path to the YAML table

    Returns:
        Parsed RegistryFile

    Raises:
        ConfigError: If the file is missing or invalid
    """
    data = load_yaml(path)

    try:
        return RegistryFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid registry file: {e}", path) from e
