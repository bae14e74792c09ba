"""Configuration management for PMCR-O."""

from .loader import (
    create_default_config,
    get_config_paths,
    load_config,
    save_config,
    validate_config_file,
)
from .models import PMCROConfig, TriggerSeed, parse_duration

__all__ = [
    "PMCROConfig",
    "TriggerSeed",
    "load_config",
    "save_config",
    "create_default_config",
    "validate_config_file",
    "get_config_paths",
    "parse_duration",
]
