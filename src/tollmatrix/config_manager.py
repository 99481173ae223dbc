"""
Configuration manager for tollmatrix settings.

Loads configuration from YAML files, validates settings,
and provides environment variable substitution.
"""

import os
import re
import logging
import yaml
from typing import Dict, Any, Optional, Tuple
from pathlib import Path
from dataclasses import dataclass, field

from .matching.geo_matcher import MatchMode

logger = logging.getLogger(__name__)

BoundsTuple = Tuple[float, float, float, float]


@dataclass
class TollMatrixConfig:
    """Validated tollmatrix configuration."""
    name: str
    db_path: Path
    default_radius_m: float = 500.0
    merge_duplicate_locations: bool = False
    match_mode: MatchMode = MatchMode.NAME_OR_KEY
    regions: Dict[str, BoundsTuple] = field(default_factory=dict)
    output_dir: Path = Path("outputs")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "db_path": str(self.db_path),
            "default_radius_m": self.default_radius_m,
            "merge_duplicate_locations": self.merge_duplicate_locations,
            "match_mode": self.match_mode.value,
            "regions": {code: list(bounds) for code, bounds in self.regions.items()},
            "output_dir": str(self.output_dir),
        }


class ConfigManager:
    """Manages tollmatrix configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration YAML file (optional)
        """
        self.config_path = config_path
        self._config: Optional[Dict[str, Any]] = None

    def load(self, config_path: Optional[Path] = None) -> TollMatrixConfig:
        """Load and validate configuration from YAML file.

        Args:
            config_path: Path to configuration file (overrides init path)

        Returns:
            TollMatrixConfig with validated settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If configuration is invalid
        """
        path = config_path or self.config_path
        if path is None:
            raise ValueError("No configuration path provided")

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, 'r') as f:
            config = yaml.safe_load(f)

        if not isinstance(config, dict):
            raise ValueError(f"Configuration must be a mapping: {path}")

        config = self._substitute_env_vars(config)

        self._validate_config(config)

        self._config = config
        logger.debug(f"Loaded configuration from {path}")

        return self._create_config(config)

    def _substitute_env_vars(self, config: Any) -> Any:
        """Recursively substitute environment variables in configuration.

        Supports syntax: ${VAR_NAME} or ${VAR_NAME:default_value}

        Args:
            config: Configuration dictionary or value

        Returns:
            Configuration with substituted values
        """
        if isinstance(config, dict):
            return {
                key: self._substitute_env_vars(value)
                for key, value in config.items()
            }
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_env_var_string(config)
        else:
            return config

    def _substitute_env_var_string(self, value: str) -> str:
        # Pattern: ${VAR_NAME} or ${VAR_NAME:default}
        pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(var_name, default_value)

        return re.sub(pattern, replacer, value)

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration structure and required fields.

        Args:
            config: Configuration dictionary

        Raises:
            ValueError: If configuration is invalid
        """
        if "name" not in config:
            raise ValueError("Configuration missing required field: name")

        if "store" not in config:
            raise ValueError("Configuration missing required field: store")

        store_config = config["store"]
        if not isinstance(store_config, dict) or not store_config.get("db_path"):
            raise ValueError("Store configuration missing required field: db_path")

        radius_config = config.get("radius", {}) or {}
        if not isinstance(radius_config, dict):
            raise ValueError("Radius configuration must be a dictionary")
        try:
            default_radius = float(radius_config.get("default_radius_m", 500.0))
        except (TypeError, ValueError):
            raise ValueError("radius.default_radius_m must be a number")
        if default_radius < 0:
            raise ValueError("radius.default_radius_m must be non-negative")

        matching_config = config.get("matching", {}) or {}
        mode = matching_config.get("mode", MatchMode.NAME_OR_KEY.value)
        valid_modes = [m.value for m in MatchMode]
        if mode not in valid_modes:
            raise ValueError(f"matching.mode must be one of {valid_modes}, got {mode!r}")

        regions = config.get("regions", {}) or {}
        if not isinstance(regions, dict):
            raise ValueError("Regions must be a dictionary of state code -> [south, west, north, east]")
        for code, bounds in regions.items():
            if not isinstance(bounds, (list, tuple)) or len(bounds) != 4:
                raise ValueError(f"Region {code} must be [south, west, north, east]")

    def _create_config(self, config: Dict[str, Any]) -> TollMatrixConfig:
        """Create TollMatrixConfig from validated configuration.

        Args:
            config: Validated configuration dictionary

        Returns:
            TollMatrixConfig instance
        """
        db_path = Path(config["store"]["db_path"]).expanduser()
        output_dir = Path(config.get("output_dir", "outputs")).expanduser()

        radius_config = config.get("radius", {}) or {}
        matching_config = config.get("matching", {}) or {}

        regions = {
            str(code).upper(): tuple(float(v) for v in bounds)
            for code, bounds in (config.get("regions", {}) or {}).items()
        }

        return TollMatrixConfig(
            name=config["name"],
            db_path=db_path,
            default_radius_m=float(radius_config.get("default_radius_m", 500.0)),
            merge_duplicate_locations=_as_bool(radius_config.get("merge_duplicate_locations", False)),
            match_mode=MatchMode(matching_config.get("mode", MatchMode.NAME_OR_KEY.value)),
            regions=regions,
            output_dir=output_dir,
        )

    def save_example_config(self, output_path: Path) -> None:
        """Save an example configuration file.

        Args:
            output_path: Path where to save example config
        """
        example_config = {
            "name": "tollmatrix",
            "store": {
                "db_path": "${TOLLMATRIX_DB:data/tollmatrix.db}"
            },
            "output_dir": "outputs",
            "radius": {
                "default_radius_m": 500.0,
                "merge_duplicate_locations": False,
            },
            "matching": {
                "mode": "name_or_key",
            },
            "regions": {
                "KS": [36.99, -102.05, 40.0, -94.59],
            },
        }

        with open(output_path, 'w') as f:
            yaml.dump(example_config, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Saved example configuration to {output_path}")


def _as_bool(value: Any) -> bool:
    # Env substitution turns booleans into strings
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
