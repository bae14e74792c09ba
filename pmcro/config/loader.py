"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..core.exceptions import ConfigurationError
from .models import PMCROConfig, resolve_env_vars

CONFIG_DIR_NAME = ".pmcro"
CONFIG_FILE_NAME = "config.yaml"


def load_config(
    project_config_path: Optional[Path] = None,
    global_config_path: Optional[Path] = None,
) -> PMCROConfig:
    """Load PMCR-O configuration from multiple sources.

    Configuration is loaded in the following order (later sources override earlier ones):
    1. Default configuration (built into the models)
    2. Global configuration (~/.config/pmcro/config.yaml)
    3. Project configuration (.pmcro/config.yaml)
    4. Explicit paths provided as arguments

    Args:
        project_config_path: Explicit path to project config file
        global_config_path: Explicit path to global config file

    Returns:
        Merged and validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or cannot be loaded
    """
    try:
        config_data: Dict[str, Any] = {}

        global_path = global_config_path or _get_global_config_path()
        if global_path and global_path.exists():
            config_data = _merge_config(config_data, _load_yaml_file(global_path))

        project_path = project_config_path or _get_project_config_path()
        if project_path and project_path.exists():
            config_data = _merge_config(config_data, _load_yaml_file(project_path))

        # Resolved before validation; numeric fields may be ${VAR:default}
        config_data = resolve_env_vars(config_data)
        return PMCROConfig(**config_data)

    except ConfigurationError:
        raise
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e
    except (OSError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def save_config(config: PMCROConfig, config_path: Path) -> None:
    """Save configuration to a YAML file.

    Args:
        config: Configuration to save
        config_path: Path to save the configuration file

    Raises:
        ConfigurationError: If configuration cannot be saved
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_dict = config.model_dump(exclude_none=True, mode="json")

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                config_dict,
                f,
                default_flow_style=False,
                sort_keys=False,
                indent=2,
                allow_unicode=True,
            )

    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Failed to save configuration to {config_path}: {e}"
        ) from e


def create_default_config() -> PMCROConfig:
    """Create a default configuration.

    Returns:
        Configuration with all default values
    """
    return PMCROConfig()


def validate_config_file(config_path: Path) -> Dict[str, Any]:
    """Validate a configuration file.

    Args:
        config_path: Path to configuration file to validate

    Returns:
        Dictionary with ``valid``, ``errors``, ``warnings`` and ``config``

    Raises:
        ConfigurationError: If file cannot be read or parsed
    """
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    config_data = _load_yaml_file(config_path)

    known_sections = set(PMCROConfig.model_fields)
    warnings = [
        f"Unknown configuration section '{key}' is ignored"
        for key in config_data
        if key not in known_sections
    ]

    try:
        config = PMCROConfig(**config_data)
    except ValidationError as e:
        return {
            "valid": False,
            "errors": [
                f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ],
            "warnings": warnings,
            "config": None,
        }

    if not config.triggers.seeds:
        warnings.append("No evolution triggers are seeded")

    return {
        "valid": True,
        "errors": [],
        "warnings": warnings,
        "config": config.model_dump(mode="json"),
    }


def get_config_paths() -> Dict[str, Optional[Path]]:
    """Get all possible configuration file paths.

    Returns:
        Dictionary with 'global' and 'project' config paths
    """
    return {"global": _get_global_config_path(), "project": _get_project_config_path()}


def _get_global_config_path() -> Optional[Path]:
    """Get the global configuration file path."""
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "pmcro" / CONFIG_FILE_NAME

    return Path.home() / ".config" / "pmcro" / CONFIG_FILE_NAME


def _get_project_config_path() -> Optional[Path]:
    """Find .pmcro/config.yaml in the current directory or a parent."""
    current = Path.cwd()

    for path in [current] + list(current.parents):
        config_dir = path / CONFIG_DIR_NAME
        if config_dir.is_dir():
            return config_dir / CONFIG_FILE_NAME

    return None


def _load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """Load and parse a YAML file.

    Raises:
        ConfigurationError: If file cannot be loaded or parsed
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {file_path}: {e}") from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file must contain a YAML object, got {type(data).__name__}"
        )

    return data


def _merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge two configuration dictionaries recursively."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_config(result[key], value)
        else:
            result[key] = value

    return result

