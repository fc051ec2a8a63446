"""
Configuration loading and validation for spike sorting.

Uses Pydantic for schema validation. A SortConfig is an immutable value that
is passed explicitly to every stage; nothing is held in module globals.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from spksort.utils.exceptions import ConfigurationError


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path("config")
DEFAULT_CONFIG_NAME = "sort_defaults.json"


# =============================================================================
# Configuration Model
# =============================================================================

class SortConfig(BaseModel):
    """
    Parameters for initial clustering, cutoff estimation and merging.

    Field aliases accept the short parameter names used in older
    configuration files (bisecs, assign, minspk, defcut, nboot, ptile).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    # Initial clustering
    bisections: int = Field(default=6, ge=1, alias="bisecs")
    assign_passes: int = Field(default=5, ge=1, alias="assign")
    min_spikes: int = Field(default=10, ge=1, alias="minspk")

    # Cutoff estimation
    default_cutoff: float = Field(default=0.05, ge=0.0, le=1.0, alias="defcut")
    n_bootstrap: int = Field(default=2000, ge=1, alias="nboot")
    alpha: float = Field(default=0.01, gt=0.0, lt=1.0)
    percentile: float = Field(default=85.0, ge=0.0, le=100.0, alias="ptile")
    fallback: str = "zero"
    fallback_cutoff: float = Field(default=0.0, ge=0.0, le=1.0)
    min_bootstrap_pairs: int = Field(default=3, ge=2)

    # Execution
    random_seed: int = Field(default=42, ge=0)
    n_workers: Optional[int] = Field(default=None, ge=1)
    show_progress: bool = False
    log_level: str = "INFO"

    @field_validator("fallback")
    @classmethod
    def check_fallback(cls, v):
        """Fallback must name a registered policy."""
        from spksort.clustering.cutoff import FallbackRegistry

        if not FallbackRegistry.is_registered(v):
            available = ", ".join(FallbackRegistry.list_all())
            raise ValueError(f"Unknown cutoff fallback '{v}'. Available: {available}")
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v):
        """Normalise log level names."""
        level = str(v).upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


# =============================================================================
# Configuration Loading Functions
# =============================================================================

def _field_names(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rewrite short parameter names (bisecs, defcut, ...) to field names.

    Raises:
        ConfigurationError: If a parameter is given under both names
    """
    aliases = {
        info.alias: name
        for name, info in SortConfig.model_fields.items()
        if info.alias
    }
    normalised: Dict[str, Any] = {}
    for key, value in data.items():
        name = aliases.get(key, key)
        if name in normalised:
            raise ConfigurationError(
                f"Parameter '{name}' given twice (as '{name}' and its short name)"
            )
        normalised[name] = value
    return normalised


def build_sort_config(
    config: Optional[Union[SortConfig, Dict[str, Any]]] = None,
    **overrides: Any,
) -> SortConfig:
    """
    Build a validated SortConfig from a model, a dict, and keyword overrides.

    Args:
        config: Base configuration (SortConfig, dict, or None for defaults)
        **overrides: Parameter values that replace those in config

    Returns:
        Validated SortConfig

    Raises:
        ConfigurationError: If any parameter is invalid

    Example:
        >>> cfg = build_sort_config(bisections=4, default_cutoff=0.0)
    """
    if config is None:
        data: Dict[str, Any] = {}
    elif isinstance(config, SortConfig):
        data = config.model_dump()
    elif isinstance(config, dict):
        data = _field_names(config)
    else:
        raise ConfigurationError(f"Unsupported config type: {type(config).__name__}")

    # Overrides win over the base whichever name either side uses
    data.update(_field_names(overrides))

    try:
        return SortConfig(**data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid sort configuration: {e}") from e


def load_json_config(path: Path) -> Dict[str, Any]:
    """
    Load a JSON configuration file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dictionary

    Raises:
        ConfigurationError: If file cannot be loaded or parsed
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration in {path} must be a JSON object")
    return data


def load_sort_config(
    path: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> SortConfig:
    """
    Load sort configuration from a JSON file.

    When no path is given, config/sort_defaults.json is used if present,
    otherwise the built-in defaults.

    Args:
        path: Optional path to a JSON config file
        **overrides: Parameter values that replace those read from file

    Returns:
        Validated SortConfig

    Raises:
        ConfigurationError: If an explicit path is missing or the config is invalid
    """
    if path is None:
        default_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_NAME
        if not default_path.exists():
            logger.warning(f"Defaults file not found: {default_path}. Using built-in defaults.")
            return build_sort_config(**overrides)
        path = default_path

    data = load_json_config(Path(path))
    # Files may group parameters under a "spksort" section
    data = data.get("spksort", data)

    logger.debug(f"Loaded sort config from {path}")
    return build_sort_config(data, **overrides)
