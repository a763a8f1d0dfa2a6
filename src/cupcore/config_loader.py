"""Configuration loader and validator."""

from pathlib import Path
from typing import Any

import yaml

from cupcore.models import AccumulationScope, DisciplinePolicy

DEFAULT_DATABASE = ".cupcore/cupcore.sqlite"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ConfigError(Exception):
    """Configuration validation error."""

    pass


def load_config(path: str) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        Dictionary with configuration values

    Raises:
        ConfigError: If file not found or invalid YAML
    """
    config_file = Path(path)

    if not config_file.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if config is None:
        raise ConfigError("Config file is empty")
    if not isinstance(config, dict):
        raise ConfigError("Config file must contain a mapping")

    return config


def _positive_int(section: dict, key: str, default: int, minimum: int) -> int:
    value = section.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
        raise ConfigError(f"discipline.{key} must be an integer >= {minimum}, got {value!r}")
    return value


def validate_discipline(section: Any) -> DisciplinePolicy:
    """Validate the ``discipline`` section into a DisciplinePolicy.

    Raises:
        ConfigError: If any value is out of range
    """
    if section is None:
        return DisciplinePolicy()
    if not isinstance(section, dict):
        raise ConfigError("discipline must be a dictionary")

    enabled = section.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError("discipline.enabled must be true or false")

    scope = str(section.get("scope", AccumulationScope.TOURNAMENT.value)).upper()
    try:
        scope = AccumulationScope(scope)
    except ValueError:
        allowed = ", ".join(s.value for s in AccumulationScope)
        raise ConfigError(f"discipline.scope must be one of {allowed}, got '{scope}'")

    return DisciplinePolicy(
        enabled=enabled,
        scope=scope,
        yellow_to_suspend=_positive_int(section, "yellow_to_suspend", 2, 1),
        red_to_suspend=_positive_int(section, "red_to_suspend", 1, 1),
        suspension_games=_positive_int(section, "suspension_games", 1, 0),
    )


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate configuration values.

    Args:
        config: Configuration dictionary

    Returns:
        Validated and normalized configuration. ``discipline`` is returned
        as a DisciplinePolicy.

    Raises:
        ConfigError: If validation fails
    """
    validated = {}

    database = config.get("database", DEFAULT_DATABASE)
    if not isinstance(database, str) or not database.strip():
        raise ConfigError("database must be a non-empty path")
    validated["database"] = database

    # Random seed (optional, None = non-deterministic draws)
    validated["random_seed"] = config.get("random_seed")
    if validated["random_seed"] is not None and (
        not isinstance(validated["random_seed"], int) or isinstance(validated["random_seed"], bool)
    ):
        raise ConfigError("random_seed must be an integer")

    log_level = str(config.get("log_level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{log_level}'")
    validated["log_level"] = log_level

    validated["discipline"] = validate_discipline(config.get("discipline"))

    return validated


def default_config() -> dict[str, Any]:
    """Configuration used when no config file is given."""
    return validate_config({})


def load_and_validate_config(path: str) -> dict[str, Any]:
    """Load and validate configuration in one step.

    Args:
        path: Path to YAML config file

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigError: If loading or validation fails
    """
    config = load_config(path)
    return validate_config(config)
