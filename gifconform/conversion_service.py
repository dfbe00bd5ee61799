"""
Conversion Service
Boundary between callers (CLI, batch runner) and the optimization pipeline:
parses request parameters, runs the optimizer and writes conforming outputs
"""

import os
import shutil
from typing import Any, Callable, Dict, Optional, Tuple
import logging

from .config_manager import ConfigManager
from .gif_processing.exceptions import ProcessingError, ValidationError
from .gif_processing.gif_config import GifConfigHelper
from .gif_processing.gif_optimizer import GifOptimizer, create_processor
from .gif_processing.gif_utils import detect_format, safe_file_operation, validate_output
from .gif_processing.models import (
    ApprovalRequired, Failed, FailureReason, ImageMetadata, OptimizationRequest, OptimizationResult, Success,
)
from .temp_file_manager import remove_path

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
CUSTOM_MODE = 'custom'


def _parse_number(params: Dict[str, Any], key: str, cast: Callable, default: Any) -> Any:
    value = params.get(key)
    if value is None or value == '':
        return default
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be a number, got {value!r}", field=key) from e


def _parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


class ConversionService:
    """Request/response front end for GifOptimizer"""

    def __init__(self, config_manager: Optional[ConfigManager] = None, processor=None,
                 optimizer: Optional[GifOptimizer] = None, temp_dir: Optional[str] = None):
        """
        Initialize the service.

        Args:
            config_manager: ConfigManager instance (packaged defaults when omitted)
            processor: Processing back end; built from configuration when omitted
            optimizer: Pre-built optimizer (takes precedence over ``processor``)
            temp_dir: Directory for intermediate artifacts
        """
        self.config = config_manager or ConfigManager(config_dir=None)
        self.config_helper = GifConfigHelper(self.config)
        self.temp_dir = temp_dir or self.config.get_temp_dir()
        if optimizer is None:
            processor = processor or create_processor(self.config_helper, self.temp_dir)
            optimizer = GifOptimizer(processor, config_manager=self.config, temp_dir=self.temp_dir)
        self.optimizer = optimizer
        self.processor = optimizer.processor

    def build_request(self, source: str, params: Dict[str, Any]) -> OptimizationRequest:
        """
        Turn caller parameters into a validated OptimizationRequest.

        ``params`` uses the boundary field names: ``mode`` (a preset name or
        ``custom``), ``maxFileSizeMB``, ``minWidth``, ``minHeight``, ``maxWidth``,
        ``maxHeight`` and ``allowFrameReduction``. Out-of-range values are
        rejected rather than clamped.

        Raises:
            ValidationError: On any missing or out-of-range parameter
        """
        if not source or not os.path.isfile(source):
            raise ValidationError(f"Source file not found: {source}", field='source')

        mode = str(params.get('mode') or '').strip().lower()
        allow_frame_reduction = _parse_flag(params.get('allowFrameReduction', False))
        limits = self.config_helper.get_request_limits()

        if not mode:
            raise ValidationError("Conversion mode is required", field='mode')

        if mode != CUSTOM_MODE:
            preset = self.config_helper.get_preset(mode)
            return OptimizationRequest(
                source_asset=source,
                max_size_bytes=int(preset['max_file_size_mb'] * BYTES_PER_MB),
                min_width=preset['min_width'],
                min_height=preset['min_height'],
                max_width=preset['max_width'],
                max_height=preset['max_height'],
                allow_frame_reduction=allow_frame_reduction,
            )

        default_min = limits['default_min_dimension']
        max_file_size_mb = _parse_number(params, 'maxFileSizeMB', float, 2.0)
        min_width = _parse_number(params, 'minWidth', int, default_min)
        min_height = _parse_number(params, 'minHeight', int, default_min)
        max_width = _parse_number(params, 'maxWidth', int, None)
        max_height = _parse_number(params, 'maxHeight', int, None)

        if not limits['min_file_size_mb'] <= max_file_size_mb <= limits['max_file_size_mb']:
            raise ValidationError(
                f"Invalid file size limit (must be {limits['min_file_size_mb']}-{limits['max_file_size_mb']} MB)",
                field='maxFileSizeMB'
            )
        for key, value in (('minWidth', min_width), ('minHeight', min_height)):
            if not limits['min_dimension_floor'] <= value <= limits['min_dimension_ceiling']:
                raise ValidationError(
                    f"{key} must be between {limits['min_dimension_floor']} and "
                    f"{limits['min_dimension_ceiling']}, got {value}",
                    field=key
                )
        for key, value, floor in (('maxWidth', max_width, min_width), ('maxHeight', max_height, min_height)):
            if value is None:
                continue
            if value < limits['min_dimension_floor']:
                raise ValidationError(f"{key} must be at least {limits['min_dimension_floor']}, got {value}",
                                      field=key)
            if value > limits['max_dimension_ceiling']:
                raise ValidationError(f"{key} must be at most {limits['max_dimension_ceiling']}, got {value}",
                                      field=key)
            if value < floor:
                raise ValidationError(f"{key} ({value}) must not be smaller than the minimum ({floor})", field=key)

        return OptimizationRequest(
            source_asset=source,
            max_size_bytes=int(max_file_size_mb * BYTES_PER_MB),
            min_width=min_width,
            min_height=min_height,
            max_width=max_width,
            max_height=max_height,
            allow_frame_reduction=allow_frame_reduction,
        )

    def process(self, source: str, output_path: str, params: Dict[str, Any],
                cancel_checker: Optional[Callable[[], bool]] = None) -> Tuple[OptimizationResult, Dict[str, Any]]:
        """
        Run one request end to end.

        On Success the conforming GIF is written to ``output_path``. The source
        is never modified. An approval response requires the caller to resubmit
        the same source with ``allowFrameReduction`` set.

        Raises:
            ValidationError: If the parameters are rejected before the pipeline runs
        """
        request = self.build_request(source, params)
        result = self.optimizer.optimize(request, cancel_checker=cancel_checker)

        if isinstance(result, Success):
            try:
                self._write_output(result, source, output_path, request.max_size_bytes)
            except (OSError, ProcessingError) as e:
                logger.error(f"Failed to write output {output_path}: {e}")
                if os.path.abspath(str(result.output_asset)) != os.path.abspath(source):
                    self.processor.discard(result.output_asset)
                failed = Failed(
                    reason=FailureReason.PROCESSING_ERROR,
                    best_achieved_size_bytes=result.final_metadata.size_bytes,
                    message=f"Failed to write output: {e}",
                    frame_count=result.final_metadata.frame_count,
                    request_id=result.request_id,
                    original_metadata=result.original_metadata,
                )
                return failed, self.to_response(failed)
        return result, self.to_response(result, output_path)

    def convert(self, source: str, output_path: str, params: Dict[str, Any],
                cancel_checker: Optional[Callable[[], bool]] = None) -> Dict[str, Any]:
        """Like ``process`` but always answers with a response dict"""
        try:
            _, response = self.process(source, output_path, params, cancel_checker)
        except ValidationError as e:
            logger.warning(f"Rejected request for {source}: {e}")
            return {'error': str(e)}
        return response

    def decline_approval(self, pending: ApprovalRequired) -> Dict[str, Any]:
        """Caller refused frame reduction for a pending approval"""
        return self.to_response(self.optimizer.decline(pending))

    def describe(self, path: str) -> Dict[str, Any]:
        """
        Inspect an uploaded animated image without converting it.

        Raises:
            ProbeError: If the file cannot be read
        """
        metadata = self.processor.probe(path)
        format_label, is_animated = detect_format(path)
        return {
            'width': metadata.width,
            'height': metadata.height,
            'fileSize': metadata.size_bytes,
            'frames': metadata.frame_count,
            'format': format_label,
            'isAnimated': is_animated or metadata.frame_count > 1,
        }

    def to_response(self, result: OptimizationResult, output_path: Optional[str] = None) -> Dict[str, Any]:
        """Render a pipeline result as a boundary response dict"""
        if isinstance(result, Success):
            original = result.original_metadata or result.final_metadata
            final = result.final_metadata
            return {
                'success': True,
                'outputPath': output_path,
                'originalWidth': original.width,
                'originalHeight': original.height,
                'finalWidth': final.width,
                'finalHeight': final.height,
                'frameCount': final.frame_count,
                'finalSizeBytes': final.size_bytes,
                'originalSizeBytes': original.size_bytes,
            }
        if isinstance(result, ApprovalRequired):
            original = result.original_metadata
            return {
                'success': False,
                'requiresApproval': True,
                'approvalMessage': result.message,
                'originalWidth': original.width if original else None,
                'originalHeight': original.height if original else None,
                'frameCount': original.frame_count if original else None,
                'originalSizeBytes': original.size_bytes if original else None,
            }
        return {'error': result.message or result.reason.value}

    def _write_output(self, result: Success, source: str, output_path: str, max_size_bytes: int):
        output_dir = os.path.dirname(os.path.abspath(output_path))
        os.makedirs(output_dir, exist_ok=True)

        if os.path.abspath(str(result.output_asset)) == os.path.abspath(source):
            # Pass-through: the source already conforms and is copied byte for byte
            if os.path.abspath(output_path) != os.path.abspath(source):
                safe_file_operation(shutil.copyfile, source, output_path)
        else:
            safe_file_operation(shutil.move, result.output_asset, output_path)

        is_valid, error = validate_output(output_path, max_size_bytes)
        if not is_valid:
            if os.path.abspath(output_path) != os.path.abspath(source):
                safe_file_operation(remove_path, output_path)
            raise ProcessingError(f"Output validation failed: {error}", operation='write_output')
        logger.info(f"Saved {output_path} ({_describe_size(result.final_metadata)})")


def _describe_size(metadata: ImageMetadata) -> str:
    return f"{metadata.width}x{metadata.height}, {metadata.frame_count} frames, {metadata.size_mb:.2f}MB"
