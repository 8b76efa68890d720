"""
Configuration module for Map Evaluation
=======================================

Centralized configuration management for the evaluation and coloring passes.
"""

import copy
from typing import Dict, Any
from pathlib import Path
import yaml


class ConfigurationError(ValueError):
    """Raised when evaluation parameters are invalid. Nothing is run or written."""


class EvaluationConfig:
    """Configuration for the map evaluation pipeline."""

    # Default configuration
    DEFAULT_CONFIG = {
        'evaluation': {
            'maximum_distance': 0.2,  # errors above this are truncated (meters)
            'evaluate': True,
            'compute_coloring': False,
            'visualize': False,
            'compute_histogram': False,
            'histogram_bins': 30,
        },

        'coloring': {
            'max_neighbors': 100,  # ground truth points looked up per voxel
            'num_workers': 1,  # >1 colors submaps in parallel threads
        },

        'bounds': {
            'type': 'none',  # 'none', 'flat' or 'slab'
            'min_bound': [None, None, None],  # flat: per-axis lower limit, None = unbounded
            'max_bound': [None, None, None],
            'plane_normal': [0.0, 0.0, 1.0],  # slab: plane n.x = offset
            'plane_offset': 0.0,
            'lower': 0.0,  # slab: accepted signed distance range to the plane
            'upper': 1.0,
        },

        'logging': {
            'save_to_file': False,
            'log_dir': 'logs',
            'verbosity': 1,  # 0 quiet, 1 info, 2 progress bars
        }
    }

    def __init__(self, config_dict: Dict[str, Any] = None):
        """
        Initialize configuration.

        Args:
            config_dict: Optional configuration dictionary (overrides defaults)
        """
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)

        if config_dict:
            self._update_nested(self.config, config_dict)

    def _update_nested(self, base: Dict, update: Dict):
        """Recursively update nested dictionary."""
        for key, value in update.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                self._update_nested(base[key], value)
            else:
                base[key] = value

    def get(self, *keys):
        """Get nested configuration value."""
        value = self.config
        for key in keys:
            value = value[key]
        return value

    def set(self, *keys, value):
        """Set nested configuration value."""
        config = self.config
        for key in keys[:-1]:
            config = config[key]
        config[keys[-1]] = value

    def validate(self) -> 'EvaluationConfig':
        """
        Check the parameters consumed by the evaluation passes.

        Returns:
            self, to allow chaining

        Raises:
            ConfigurationError: If a parameter is out of range
        """
        validate_maximum_distance(self.get('evaluation', 'maximum_distance'))

        bins = self.get('evaluation', 'histogram_bins')
        if not isinstance(bins, int) or bins < 1:
            raise ConfigurationError(f"histogram_bins must be a positive integer, got {bins!r}")

        max_neighbors = self.get('coloring', 'max_neighbors')
        if not isinstance(max_neighbors, int) or max_neighbors < 1:
            raise ConfigurationError(f"max_neighbors must be a positive integer, got {max_neighbors!r}")

        num_workers = self.get('coloring', 'num_workers')
        if not isinstance(num_workers, int) or num_workers < 1:
            raise ConfigurationError(f"num_workers must be a positive integer, got {num_workers!r}")

        bounds_type = self.get('bounds', 'type')
        if bounds_type not in ('none', 'flat', 'slab'):
            raise ConfigurationError(f"Unknown bounds type: {bounds_type!r}")

        return self

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> 'EvaluationConfig':
        """Load configuration from YAML file."""
        with open(yaml_path, 'r') as f:
            config_dict = yaml.safe_load(f)
        return cls(config_dict)

    def to_yaml(self, yaml_path: Path):
        """Save configuration to YAML file."""
        with open(yaml_path, 'w') as f:
            yaml.dump(self.config, f, default_flow_style=False, indent=2)

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary."""
        return copy.deepcopy(self.config)


def validate_maximum_distance(maximum_distance) -> float:
    """
    Reject non-positive (or non-numeric) truncation distances.

    Raises:
        ConfigurationError: If maximum_distance is not a finite value > 0
    """
    try:
        value = float(maximum_distance)
    except (TypeError, ValueError):
        raise ConfigurationError(f"maximum_distance must be a number, got {maximum_distance!r}")

    # NaN fails this comparison too
    if not value > 0.0 or value == float('inf'):
        raise ConfigurationError(f"maximum_distance must be > 0, got {maximum_distance!r}")
    return value


# Convenience function
def load_config(yaml_path: Path = None) -> EvaluationConfig:
    """
    Load configuration from YAML or use defaults.

    Args:
        yaml_path: Optional path to YAML config file

    Returns:
        EvaluationConfig instance
    """
    if yaml_path and Path(yaml_path).exists():
        return EvaluationConfig.from_yaml(Path(yaml_path))
    else:
        return EvaluationConfig()
