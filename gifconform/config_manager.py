"""
Configuration Manager for gifconform
Handles loading and managing configuration from YAML files and CLI arguments
"""

import copy
import os
import yaml
import logging
from typing import Dict, Any, List

logger = logging.getLogger(__name__)

CONFIG_FILES = [
    'gif_settings.yaml',
    'logging.yaml',
]

# Used for any key missing from every YAML source
DEFAULT_CONFIG: Dict[str, Any] = {
    'gif_settings': {
        'presets': {
            'preset': {
                'max_file_size_mb': 2.0,
                'min_width': 180,
                'min_height': 180,
            },
        },
        'limits': {
            'min_file_size_mb': 0.1,
            'max_file_size_mb': 50.0,
            'min_dimension_floor': 1,
            'min_dimension_ceiling': 2000,
            'max_dimension_ceiling': 4000,
            'default_min_dimension': 180,
        },
        'optimization': {
            'palette_ladder': [256, 192, 128, 96, 64, 48, 32],
            'frame_keep_ratio': 0.85,
            'min_frames_for_reduction': 3,
        },
        'processing': {
            'backend': 'auto',
            'dither': True,
            'gifsicle_optimize_level': 3,
            'gifsicle_timeout_seconds': 120,
        },
        'performance': {
            'max_workers': 0,
        },
    },
}


class ConfigManager:
    def __init__(self, config_dir: str = "config"):
        self.config_dir = config_dir
        self.config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self._config_file_timestamps = {}  # Track file modification times
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files from the config directory"""
        for config_file in CONFIG_FILES:
            # 1) Prefer explicit external config dir
            config_path = os.path.join(self.config_dir, config_file) if self.config_dir else None
            if config_path and os.path.exists(config_path):
                self._load_file(config_path, config_file)
                continue

            # 2) Fall back to packaged defaults under installed package dir
            package_dir = os.path.abspath(os.path.dirname(__file__))
            packaged_path = os.path.join(package_dir, 'config', config_file)
            if os.path.exists(packaged_path):
                self._load_file(packaged_path, config_file)
                continue

            # 3) If neither found, keep in-code defaults
            logger.warning(f"Config file not found in '{self.config_dir}' or packaged defaults: {config_file}")

    def _load_file(self, path: str, config_file: str):
        try:
            with open(path, 'r', encoding='utf-8') as file:
                config_data = yaml.safe_load(file)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading configuration from {path}: {e}")
            raise
        if config_data:
            _deep_merge(self.config, config_data)
        self._config_file_timestamps[config_file] = os.path.getmtime(path)
        logger.debug(f"Loaded config from {path}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: get('gif_settings.optimization.palette_ladder')
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            logger.debug(f"Configuration key '{key_path}' not found, using default: {default}")
            return default

    def update_from_args(self, args_dict: Dict[str, Any]):
        """Update configuration with command line arguments"""
        overrides_applied = []
        for key, value in args_dict.items():
            if value is not None:
                old_value = self.get(key)
                self._set_nested_value(key, value)
                overrides_applied.append(f"{key}: {old_value} → {value}")
                logger.info(f"Configuration override applied: {key} = {value} (was: {old_value})")

        if overrides_applied:
            logger.info(f"Applied {len(overrides_applied)} CLI configuration overrides")
        else:
            logger.debug("No CLI configuration overrides to apply")

    def _set_nested_value(self, key_path: str, value: Any):
        """Set nested configuration value using dot notation"""
        keys = key_path.split('.')
        config_section = self.config

        # Navigate to the parent of the target key
        for key in keys[:-1]:
            if key not in config_section or not isinstance(config_section[key], dict):
                config_section[key] = {}
            config_section = config_section[key]

        # Set the final value
        config_section[keys[-1]] = value

    def validate_configuration_values(self) -> List[str]:
        """Check configured values for consistency. Returns a list of problems (empty when valid)."""
        errors = []

        ladder = self.get('gif_settings.optimization.palette_ladder', [])
        if not isinstance(ladder, list) or not ladder:
            errors.append("gif_settings.optimization.palette_ladder must be a non-empty list")
        else:
            if not all(isinstance(c, int) and 2 <= c <= 256 for c in ladder):
                errors.append(f"palette_ladder entries must be integers in 2-256: {ladder}")
            elif any(a <= b for a, b in zip(ladder, ladder[1:])):
                errors.append(f"palette_ladder must be strictly descending: {ladder}")

        ratio = self.get('gif_settings.optimization.frame_keep_ratio')
        if not isinstance(ratio, (int, float)) or not 0 < ratio < 1:
            errors.append(f"frame_keep_ratio must be between 0 and 1 (exclusive): {ratio}")

        min_frames = self.get('gif_settings.optimization.min_frames_for_reduction')
        if not isinstance(min_frames, int) or min_frames < 2:
            errors.append(f"min_frames_for_reduction must be an integer >= 2: {min_frames}")

        limits = self.get('gif_settings.limits', {}) or {}
        lo, hi = limits.get('min_file_size_mb'), limits.get('max_file_size_mb')
        if not isinstance(lo, (int, float)) or not isinstance(hi, (int, float)) or not 0 < lo <= hi:
            errors.append(f"file size limits must satisfy 0 < min <= max: {lo}, {hi}")

        backend = self.get('gif_settings.processing.backend')
        if backend not in ('auto', 'pillow', 'gifsicle'):
            errors.append(f"processing.backend must be one of auto, pillow, gifsicle: {backend}")

        workers = self.get('gif_settings.performance.max_workers')
        if not isinstance(workers, int) or workers < 0:
            errors.append(f"performance.max_workers must be a non-negative integer: {workers}")

        for error in errors:
            logger.error(f"Configuration error: {error}")
        return errors

    def validate_config(self) -> bool:
        """Validate that required configuration values are present and sane"""
        if self.validate_configuration_values():
            return False
        logger.info("Configuration validation passed")
        return True

    def get_temp_dir(self) -> str:
        """Return the temp directory for intermediate artifacts, creating it if needed."""
        temp_dir = self.get('temp_dir') or os.path.join(os.getcwd(), 'temp')
        temp_dir = os.path.abspath(temp_dir)
        os.makedirs(temp_dir, exist_ok=True)
        return temp_dir


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]):
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
