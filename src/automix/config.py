"""
Configuration management for automix-server.

Loads and validates TOML config against strict bounds.
All tunable parameters are bounded and validated at startup.
"""

import copy
import os
from pathlib import Path
from typing import Dict, Any, Optional
import toml
import logging

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when config validation fails."""
    pass


class Config:
    """Configuration loader and validator."""

    PARAM_BOUNDS = {
        "library": {
            "catalog_path": None,
            "output_dir": None,
            "mix_url_prefix": None,
        },
        "mix": {
            "default_track_count": (1, 200),
            "default_bpm_min": (40, 220),
            "default_bpm_max": (40, 220),
            "default_energy_min": (1, 10),
            "default_energy_max": (1, 10),
        },
        "selection": {
            "bpm_prefilter_tolerance": (0, 40),
            "jitter": (0, 50),
        },
        "llm": {
            "max_tokens": (64, 4096),
            "timeout_seconds": (1, 120),
        },
        "render": {
            "crossfade_duration_seconds": (1, 30),
            "timeout_seconds": (30, 7200),
            "min_output_bytes": (0, 10 * 1024 * 1024),
        },
        "jobs": {
            "max_workers": (1, 16),
            "max_job_seconds": (60, 14400),
            "retention_hours": (1, 720),
        },
        "playlist": {
            "timeout_seconds": (1, 60),
        },
        "server": {
            "host": None,
            "port": (1, 65535),
        },
    }

    DEFAULT_CONFIG = {
        "config_version": "1.0",
        "library": {
            "catalog_path": "data/audio-library-analysis.json",
            "output_dir": "output",
            "mix_url_prefix": "/mixes",
        },
        "mix": {
            "default_track_count": 6,
            "default_bpm_min": 115,
            "default_bpm_max": 135,
            "default_energy_min": 3,
            "default_energy_max": 8,
        },
        "selection": {
            "bpm_prefilter_tolerance": 10,
            "jitter": 10,
        },
        "llm": {
            "enabled": True,
            "model": "claude-sonnet-4-5",
            "max_tokens": 500,
            "timeout_seconds": 20,
        },
        "render": {
            "binary": "ffmpeg",
            "output_format": "mp3",
            "quality": "high",
            "crossfade_duration_seconds": 8,
            "timeout_seconds": 1800,
            "min_output_bytes": 1024,
        },
        "jobs": {
            "max_workers": 2,
            "max_job_seconds": 3600,
            "retention_hours": 24,
        },
        "playlist": {
            "timeout_seconds": 15,
            "api_base": "https://api.spotify.com/v1",
        },
        "server": {
            "host": "0.0.0.0",
            "port": 8000,
        },
    }

    def __init__(self, config_dict: Dict[str, Any]):
        """Initialize config from dictionary."""
        self.data = config_dict
        self._validate()

    @classmethod
    def defaults(cls) -> "Config":
        """Build a config made only of default values."""
        return cls(copy.deepcopy(cls.DEFAULT_CONFIG))

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """
        Load config from TOML file.

        Args:
            config_path: Path to automix.toml. If None, uses AUTOMIX_CONFIG_PATH env var
                        or defaults to configs/automix.toml.

        Returns:
            Config instance.

        Raises:
            ConfigError: If config is invalid or unreadable.
        """
        if config_path is None:
            config_path = os.getenv("AUTOMIX_CONFIG_PATH", "configs/automix.toml")

        config_path = Path(config_path)

        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}. Using defaults.")
            return cls.defaults()

        try:
            config_dict = toml.load(config_path)
        except (OSError, toml.TomlDecodeError) as e:
            raise ConfigError(f"Failed to load config from {config_path}: {e}")

        logger.info(f"Loaded config from {config_path}")
        return cls(config_dict)

    def _validate(self) -> None:
        """
        Validate all config parameters against bounds.

        Raises:
            ConfigError: If any parameter is out of bounds.
        """
        for section, params in self.PARAM_BOUNDS.items():
            if section not in self.data:
                logger.warning(f"Missing config section: {section}. Using defaults.")
                self.data[section] = copy.deepcopy(self.DEFAULT_CONFIG.get(section, {}))
                continue

            section_data = self.data[section]

            # Unbounded keys still get their defaults
            for param, default_val in self.DEFAULT_CONFIG.get(section, {}).items():
                if param not in params and param not in section_data:
                    section_data[param] = default_val

            for param, bounds in params.items():
                if param not in section_data:
                    default_val = self.DEFAULT_CONFIG.get(section, {}).get(param)
                    if default_val is not None:
                        logger.warning(f"Missing param {section}.{param}. Using default: {default_val}")
                        section_data[param] = default_val
                    continue

                value = section_data[param]

                # Strings and paths carry no bounds
                if bounds is None:
                    continue

                min_val, max_val = bounds
                if not isinstance(value, (int, float)) or isinstance(value, bool):
                    raise ConfigError(f"Parameter {section}.{param}={value!r} must be numeric")
                if not (min_val <= value <= max_val):
                    raise ConfigError(
                        f"Parameter {section}.{param}={value} out of bounds "
                        f"[{min_val}, {max_val}]"
                    )

        mix = self.data["mix"]
        if mix["default_bpm_min"] > mix["default_bpm_max"]:
            raise ConfigError("mix.default_bpm_min must not exceed mix.default_bpm_max")
        if mix["default_energy_min"] > mix["default_energy_max"]:
            raise ConfigError("mix.default_energy_min must not exceed mix.default_energy_max")

        logger.debug("Config validation passed")

    def get(self, section: str, param: str, default: Any = None) -> Any:
        """Get a config parameter safely."""
        return self.data.get(section, {}).get(param, default)

    def __getitem__(self, section: str) -> Dict[str, Any]:
        """Allow dict-like access: config["render"]"""
        return self.data.get(section, {})

    def __repr__(self) -> str:
        version = self.data.get('config_version', 'unknown')
        return f"Config(version={version})"
