"""
GIF Configuration Helper
Provides centralized config access with validation and sensible defaults
"""

from typing import Dict, Any
import logging
import os

from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class GifConfigHelper:
    """Helper class for accessing GIF configuration with validation and defaults"""

    def __init__(self, config_manager):
        """
        Initialize config helper.

        Args:
            config_manager: ConfigManager instance
        """
        self.config = config_manager

    def get_pipeline_config(self) -> Dict[str, Any]:
        """
        Get optimization pipeline settings.

        Returns:
            Dictionary with palette ladder, frame reduction and dimension defaults
        """
        opt_cfg = self.config.get('gif_settings.optimization', {}) or {}
        limits = self.config.get('gif_settings.limits', {}) or {}

        ladder = [int(c) for c in opt_cfg.get('palette_ladder', [256, 192, 128, 96, 64, 48, 32])]
        return {
            'palette_ladder': [max(2, min(256, c)) for c in ladder],
            'frame_keep_ratio': float(opt_cfg.get('frame_keep_ratio', 0.85)),
            'min_frames_for_reduction': int(opt_cfg.get('min_frames_for_reduction', 3)),
            'default_min_dimension': int(limits.get('default_min_dimension', 180)),
        }

    def get_preset(self, name: str) -> Dict[str, Any]:
        """
        Get a named preset.

        Raises:
            ValidationError: If the preset is not configured
        """
        presets = self.config.get('gif_settings.presets', {}) or {}
        preset = presets.get(name)
        if not preset:
            raise ValidationError(f"Unknown preset: {name}", field='mode')
        default_min = self.get_pipeline_config()['default_min_dimension']
        return {
            'max_file_size_mb': float(preset.get('max_file_size_mb', 2.0)),
            'min_width': int(preset.get('min_width', default_min)),
            'min_height': int(preset.get('min_height', default_min)),
            'max_width': int(preset['max_width']) if preset.get('max_width') else None,
            'max_height': int(preset['max_height']) if preset.get('max_height') else None,
        }

    def get_request_limits(self) -> Dict[str, Any]:
        """
        Get the accepted ranges for caller-supplied request parameters.

        Returns:
            Dictionary with file size and dimension ranges
        """
        limits = self.config.get('gif_settings.limits', {}) or {}
        return {
            'min_file_size_mb': float(limits.get('min_file_size_mb', 0.1)),
            'max_file_size_mb': float(limits.get('max_file_size_mb', 50.0)),
            'min_dimension_floor': int(limits.get('min_dimension_floor', 1)),
            'min_dimension_ceiling': int(limits.get('min_dimension_ceiling', 2000)),
            'max_dimension_ceiling': int(limits.get('max_dimension_ceiling', 4000)),
            'default_min_dimension': int(limits.get('default_min_dimension', 180)),
        }

    def get_processing_config(self) -> Dict[str, Any]:
        proc_cfg = self.config.get('gif_settings.processing', {}) or {}
        return {
            'backend': str(proc_cfg.get('backend', 'auto')).lower(),
            'dither': bool(proc_cfg.get('dither', True)),
            'gifsicle_optimize_level': int(proc_cfg.get('gifsicle_optimize_level', 3)),
            'gifsicle_timeout_seconds': int(proc_cfg.get('gifsicle_timeout_seconds', 120)),
        }

    def get_performance_config(self) -> Dict[str, Any]:
        """
        Get performance configuration settings.

        Returns:
            Dictionary with the resolved worker count (0 in config means one per CPU)
        """
        perf_cfg = self.config.get('gif_settings.performance', {}) or {}
        max_workers = int(perf_cfg.get('max_workers', 0) or 0)
        if max_workers <= 0:
            max_workers = os.cpu_count() or 1
        return {
            'max_workers': max_workers,
        }
