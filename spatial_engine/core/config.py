"""
Configuration management for Spatial Engine.
"""
import os
import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigurationError


DEFAULT_CONFIG: Dict[str, Any] = {
    'weights': {
        'style': 'W',
        'zero_policy': False,
    },
    'autocorrelation': {
        'permutations': 999,
        'alternative': 'greater',
        'lisa_significance': 0.05,
        'lisa_method': 'permutation',
        'seed': None,
        'chunk_size': 250,
    },
    'regression': {
        'max_iterations': 500,
        'tolerance': 1e-8,
        'boundary_epsilon': 1e-6,
        'impact_draws': 1000,
        'significance': 0.05,
        'seed': None,
    },
    'gwr': {
        'kernel': 'bisquare',
        'fixed': False,
        'max_iterations': 200,
        'tolerance': 1e-5,
        'min_neighbors': None,
    },
    'parallel': {
        'max_workers': None,
        'executor': 'thread',
        'timeout': None,
    },
    'logging': {
        'log_level': 'INFO',
        'logs_dir': 'logs',
        'json_format': False,
        'verbose_libraries': {
            'fiona': 'WARNING',
            'pyogrio': 'WARNING',
        },
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager for the application."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration from file or defaults."""
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file layered over the defaults."""
        if self.config_path and os.path.exists(self.config_path):
            with open(self.config_path, 'r') as f:
                try:
                    loaded = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigurationError(
                    f"Configuration file {self.config_path} must contain a mapping"
                )
            return _merge(DEFAULT_CONFIG, loaded)

        return copy.deepcopy(DEFAULT_CONFIG)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        keys = key_path.split('.')
        result = self.config

        for key in keys:
            if isinstance(result, dict) and key in result:
                result = result[key]
            else:
                return default

        return result

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        target = self.config

        for key in keys[:-1]:
            if key not in target:
                target[key] = {}
            target = target[key]

        target[keys[-1]] = value

    def section(self, name: str):
        """Return a validated settings object for a configuration section."""
        from .schemas import SECTION_SCHEMAS

        if name not in SECTION_SCHEMAS:
            raise ConfigurationError(f"Unknown configuration section: {name}")

        try:
            return SECTION_SCHEMAS[name](**(self.get(name) or {}))
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid '{name}' configuration: {e}") from e

    def save(self, path: Optional[str] = None) -> None:
        """Save current configuration to file."""
        save_path = path or self.config_path
        if not save_path:
            raise ConfigurationError("No path specified for saving configuration")

        Path(save_path).parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, 'w') as f:
            yaml.dump(self.config, f, default_flow_style=False)


# Global configuration instance
config = Config()


def initialize_config(config_path: Optional[str] = None) -> Config:
    """Initialize the global configuration."""
    global config
    config = Config(config_path)
    return config


def get_config() -> Config:
    """Return the current global configuration."""
    return config
