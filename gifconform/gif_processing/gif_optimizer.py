"""
GIF Optimizer
Main optimizer class with stage-based pipeline for animated image optimization
"""

import dataclasses
import uuid
from typing import Any, Callable, List, Optional
import logging

from .exceptions import BudgetUnreachable, PipelineCancelled, ProbeError, ProcessingError
from .gif_config import GifConfigHelper
from .gifsicle_processor import GifsicleProcessor
from .models import (
    ApprovalRequired, Failed, FailureReason, IllegalTransition, OptimizationRequest, OptimizationResult,
    PipelineRun, PipelineState, Success,
)
from .optimization_stages import (
    DEFAULT_FRAME_KEEP_RATIO, DEFAULT_MIN_FRAMES_FOR_REDUCTION, DEFAULT_PALETTE_LADDER,
    ApprovalGate, DimensionNormalizer, FrameSampler, MetadataProbe, PipelineStage, SizeReducer, StageStatus,
)
from .pil_processor import PILProcessor
from .processor import ImageProcessor
from ..temp_file_manager import TempArtifactScope

logger = logging.getLogger(__name__)

_LATEST = object()


def create_processor(config_helper: GifConfigHelper, temp_dir: Optional[str] = None) -> ImageProcessor:
    """
    Build the processing back end named in configuration.

    ``auto`` prefers gifsicle when the binary is installed and falls back to Pillow.
    """
    cfg = config_helper.get_processing_config()
    backend = cfg['backend']
    if backend in ('gifsicle', 'auto'):
        gifsicle = GifsicleProcessor(
            temp_dir=temp_dir,
            optimize_level=cfg['gifsicle_optimize_level'],
            timeout_seconds=cfg['gifsicle_timeout_seconds'],
            dither=cfg['dither'],
        )
        if backend == 'gifsicle' or gifsicle.is_available():
            logger.debug("Using gifsicle processing back end")
            return gifsicle
        logger.info("gifsicle not available, using Pillow processing back end")
    return PILProcessor(temp_dir=temp_dir, dither=cfg['dither'])


class GifOptimizer:
    """Runs the optimization state machine once per request and owns artifact cleanup"""

    def __init__(self, processor: ImageProcessor, config_manager=None, temp_dir: Optional[str] = None):
        """
        Initialize GIF optimizer.

        Args:
            processor: Processing capability used by every stage
            config_manager: Optional ConfigManager instance (built-in defaults when omitted)
            temp_dir: Directory for intermediate artifacts
        """
        self.processor = processor
        self.temp_dir = temp_dir
        if config_manager is not None:
            pipeline_cfg = GifConfigHelper(config_manager).get_pipeline_config()
            self.palette_ladder = pipeline_cfg['palette_ladder']
            self.frame_keep_ratio = pipeline_cfg['frame_keep_ratio']
            self.min_frames_for_reduction = pipeline_cfg['min_frames_for_reduction']
            if self.temp_dir is None:
                self.temp_dir = config_manager.get_temp_dir()
        else:
            self.palette_ladder = list(DEFAULT_PALETTE_LADDER)
            self.frame_keep_ratio = DEFAULT_FRAME_KEEP_RATIO
            self.min_frames_for_reduction = DEFAULT_MIN_FRAMES_FOR_REDUCTION

    def build_stages(self, processor: ImageProcessor,
                     cancel_checker: Optional[Callable[[], bool]] = None) -> List[PipelineStage]:
        """Ordered stage list. The normalizer runs first; frame sampling only after the gate."""
        return [
            DimensionNormalizer(processor, cancel_checker),
            SizeReducer(processor, cancel_checker, palette_ladder=self.palette_ladder),
            ApprovalGate(processor, cancel_checker),
            FrameSampler(processor, cancel_checker, keep_ratio=self.frame_keep_ratio,
                         min_frames=self.min_frames_for_reduction),
        ]

    def optimize(self, request: OptimizationRequest,
                 cancel_checker: Optional[Callable[[], bool]] = None) -> OptimizationResult:
        """
        Optimize one asset to satisfy the request.

        Args:
            request: Validated OptimizationRequest
            cancel_checker: Optional callback returning True once the caller abandons the request

        Returns:
            Success, ApprovalRequired or Failed. Every intermediate artifact except a
            Success output is deleted before this returns or raises.
        """
        run = PipelineRun(request_id=uuid.uuid4().hex)
        scope = TempArtifactScope(run.request_id, self.temp_dir, disposer=self.processor.discard)
        processor = self.processor.bind(scope)
        keep = None

        logger.info(
            f"[{run.request_id[:8]}] Optimizing {request.source_asset}: target={request.max_size_bytes} bytes, "
            f"min={request.min_width}x{request.min_height}, max={request.max_width}x{request.max_height}, "
            f"frame_reduction={'allowed' if request.allow_frame_reduction else 'needs approval'}"
        )
        try:
            result = self._execute(run, request, processor, cancel_checker)
            if isinstance(result, Success):
                keep = result.output_asset
            return result
        except PipelineCancelled as e:
            logger.warning(f"[{run.request_id[:8]}] {e}")
            return self._fail(run, FailureReason.CANCELLED, str(e))
        except ProbeError as e:
            logger.error(f"[{run.request_id[:8]}] Probe failed: {e}")
            return self._fail(run, FailureReason.PROBE_ERROR, str(e), best_size=None)
        except BudgetUnreachable as e:
            logger.warning(f"[{run.request_id[:8]}] {e}")
            return self._fail(run, FailureReason.BUDGET_UNREACHABLE, str(e),
                              best_size=e.best_size_bytes, frame_count=e.frame_count)
        except ProcessingError as e:
            logger.error(f"[{run.request_id[:8]}] Processing failed: {e}")
            return self._fail(run, FailureReason.PROCESSING_ERROR, str(e))
        except Exception:
            logger.exception(f"[{run.request_id[:8]}] Unexpected error during optimization")
            self._mark_failed(run)
            raise
        finally:
            scope.close(keep=keep)

    def decline(self, pending: ApprovalRequired) -> Failed:
        """Caller refused frame reduction for a pending approval. No retry is implied."""
        logger.info(f"[{pending.request_id[:8]}] Frame reduction declined by caller")
        return Failed(
            reason=FailureReason.CANCELLED,
            best_achieved_size_bytes=pending.current_size_bytes,
            message="Frame reduction declined",
            request_id=pending.request_id,
            original_metadata=pending.original_metadata,
        )

    def _execute(self, run: PipelineRun, request: OptimizationRequest, processor: ImageProcessor,
                 cancel_checker: Optional[Callable[[], bool]]) -> OptimizationResult:
        is_cancelled = cancel_checker or (lambda: False)
        prober = MetadataProbe(processor)

        asset: Any = request.source_asset
        metadata = prober.probe(asset)
        run.original_metadata = metadata
        if processor.needs_conversion(asset):
            asset = processor.to_gif(asset)
            metadata = prober.probe(asset)
        run.latest_metadata = metadata
        run.transition(PipelineState.PROBED)
        logger.info(
            f"[{run.request_id[:8]}] Source: {metadata.width}x{metadata.height}, "
            f"{metadata.frame_count} frames, {metadata.size_mb:.2f}MB"
        )

        for stage in self.build_stages(processor, cancel_checker):
            if is_cancelled():
                raise PipelineCancelled(f"Cancelled before {stage.name}")
            if stage.entry_state is not None:
                run.transition(stage.entry_state)
            try:
                outcome = stage.attempt(asset, metadata, request)
            except ProcessingError as e:
                if not stage.skippable_on_error(request):
                    raise
                logger.warning(f"[{run.request_id[:8]}] {stage.name} failed, continuing unchanged: {e}")
                outcome = None

            if outcome is not None:
                if outcome.asset is not asset:
                    processor.release(asset)
                asset, metadata = outcome.asset, outcome.metadata
                run.latest_metadata = metadata
            if stage.exit_state is not None:
                run.transition(stage.exit_state)
            if outcome is None or outcome.status is StageStatus.CONTINUE:
                continue

            if outcome.status is StageStatus.COMPLETE:
                if not metadata.fits_budget(request.max_size_bytes):
                    raise ProcessingError(f"{stage.name} reported success over budget ({metadata.size_bytes} bytes)")
                run.transition(PipelineState.DONE)
                logger.info(
                    f"[{run.request_id[:8]}] Done: {metadata.width}x{metadata.height}, "
                    f"{metadata.frame_count} frames, {metadata.size_mb:.2f}MB"
                )
                return Success(output_asset=asset, final_metadata=metadata, request_id=run.request_id,
                               original_metadata=run.original_metadata)

            # HALT: the best-effort artifact is not kept
            return dataclasses.replace(outcome.result, request_id=run.request_id,
                                       original_metadata=run.original_metadata)

        raise ProcessingError("Pipeline finished without reaching the size budget")

    def _fail(self, run: PipelineRun, reason: FailureReason, message: str, best_size: Any = _LATEST,
              frame_count: Optional[int] = None) -> Failed:
        self._mark_failed(run)
        latest = run.latest_metadata
        if best_size is _LATEST:
            best_size = latest.size_bytes if latest is not None else None
        if frame_count is None and latest is not None and reason is not FailureReason.PROBE_ERROR:
            frame_count = latest.frame_count
        return Failed(reason=reason, best_achieved_size_bytes=best_size, message=message, frame_count=frame_count,
                      request_id=run.request_id, original_metadata=run.original_metadata)

    @staticmethod
    def _mark_failed(run: PipelineRun):
        try:
            run.transition(PipelineState.FAILED)
        except IllegalTransition:
            pass
