"""
Optimization Stages
Strategy objects for each step of the animated image optimization pipeline
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union
import logging

from .exceptions import BudgetUnreachable, PipelineCancelled, ProbeError, ProcessingError
from .models import ApprovalRequired, ImageMetadata, OptimizationRequest, OptimizationResult, PipelineState
from .processor import ImageProcessor

logger = logging.getLogger(__name__)

DEFAULT_PALETTE_LADDER = (256, 192, 128, 96, 64, 48, 32)
DEFAULT_FRAME_KEEP_RATIO = 0.85
DEFAULT_MIN_FRAMES_FOR_REDUCTION = 3


class StageStatus(Enum):
    CONTINUE = "continue"
    COMPLETE = "complete"  # budget met
    HALT = "halt"  # stop with the attached result


@dataclass(frozen=True)
class StageOutcome:
    status: StageStatus
    asset: Any
    metadata: ImageMetadata
    result: Optional[OptimizationResult] = None


class MetadataProbe:
    """Reads width, height, frame count and byte size through the processor"""

    def __init__(self, processor: ImageProcessor):
        self.processor = processor

    def probe(self, asset: Any) -> ImageMetadata:
        try:
            return self.processor.probe(asset)
        except ProbeError:
            raise
        except (OSError, ValueError) as e:
            raise ProbeError(f"Cannot read {asset}: {e}") from e


class PipelineStage(ABC):
    """Base class for pipeline stages"""

    name = 'stage'
    # State entered before ``attempt`` runs, and state reached when it returns
    entry_state: Optional[PipelineState] = None
    exit_state: Optional[PipelineState] = None

    def __init__(self, processor: ImageProcessor, cancel_checker: Optional[Callable[[], bool]] = None):
        """
        Initialize stage.

        Args:
            processor: Processing capability, already bound to the run's artifact scope
            cancel_checker: Optional callback returning True once the caller abandons the run
        """
        self.processor = processor
        self.prober = MetadataProbe(processor)
        self._cancel_checker: Callable[[], bool] = cancel_checker or (lambda: False)

    @abstractmethod
    def attempt(self, asset: Any, metadata: ImageMetadata, request: OptimizationRequest) -> StageOutcome:
        """
        Run this stage.

        Args:
            asset: Current working asset
            metadata: Fresh metadata for ``asset``
            request: The pipeline request

        Returns:
            StageOutcome carrying the (possibly new) asset and its metadata
        """
        pass

    def skippable_on_error(self, request: OptimizationRequest) -> bool:
        """Whether the pipeline may carry on with the unmodified asset if this stage fails"""
        return False

    def _check_cancelled(self):
        if self._cancel_checker():
            raise PipelineCancelled(f"Cancelled during {self.name}")

    def _require_same_frames(self, before: ImageMetadata, after: ImageMetadata, operation: str):
        if after.frame_count != before.frame_count:
            raise ProcessingError(
                f"{operation} changed frame count {before.frame_count} -> {after.frame_count}",
                operation=operation
            )


class DimensionNormalizer(PipelineStage):
    """Downscale to fit max bounds, then pad up to min bounds. Never upscales, crops or stretches."""

    name = 'dimension_normalizer'
    exit_state = PipelineState.DIMENSION_NORMALIZED

    @staticmethod
    def fit_within_max(width: int, height: int, max_width: Optional[int],
                       max_height: Optional[int]) -> Tuple[int, int]:
        """Largest aspect-preserving size within the max bounds (never larger than the input)"""
        ratios = []
        if max_width is not None and width > max_width:
            ratios.append(Fraction(max_width, width))
        if max_height is not None and height > max_height:
            ratios.append(Fraction(max_height, height))
        if not ratios:
            return width, height
        ratio = min(ratios)
        return max(1, int(width * ratio)), max(1, int(height * ratio))

    @staticmethod
    def padded_size(width: int, height: int, min_width: Optional[int],
                    min_height: Optional[int]) -> Tuple[int, int]:
        return max(width, min_width or 0), max(height, min_height or 0)

    def normalize(self, asset: Any, metadata: ImageMetadata, min_width: Optional[int], min_height: Optional[int],
                  max_width: Optional[int] = None, max_height: Optional[int] = None) -> Tuple[Any, ImageMetadata]:
        width, height = metadata.width, metadata.height
        current, current_meta = asset, metadata

        target = self.fit_within_max(width, height, max_width, max_height)
        if target != (width, height):
            logger.info(f"Downscaling {width}x{height} -> {target[0]}x{target[1]} to fit max bounds")
            resized = self.processor.resize(current, *target)
            resized_meta = self.prober.probe(resized)
            self._require_same_frames(current_meta, resized_meta, 'resize')
            current, current_meta = resized, resized_meta

        self._check_cancelled()

        pad_target = self.padded_size(current_meta.width, current_meta.height, min_width, min_height)
        if pad_target != (current_meta.width, current_meta.height):
            fill = self.processor.dominant_edge_color(current)
            logger.info(
                f"Padding {current_meta.width}x{current_meta.height} -> {pad_target[0]}x{pad_target[1]} "
                f"with edge color rgb{fill}"
            )
            padded = self.processor.pad_canvas(current, pad_target[0], pad_target[1], fill)
            padded_meta = self.prober.probe(padded)
            self._require_same_frames(current_meta, padded_meta, 'pad_canvas')
            if current is not asset:
                self.processor.release(current)
            current, current_meta = padded, padded_meta

        return current, current_meta

    def attempt(self, asset: Any, metadata: ImageMetadata, request: OptimizationRequest) -> StageOutcome:
        if request.dimensions_satisfied(metadata.width, metadata.height):
            logger.debug(f"Dimensions {metadata.width}x{metadata.height} already within bounds")
            return StageOutcome(StageStatus.CONTINUE, asset, metadata)

        current, current_meta = self.normalize(asset, metadata, request.min_width, request.min_height,
                                               request.max_width, request.max_height)
        if not request.dimensions_satisfied(current_meta.width, current_meta.height):
            raise ProcessingError(
                f"Normalized size {current_meta.width}x{current_meta.height} still violates dimension bounds",
                operation='normalize'
            )
        return StageOutcome(StageStatus.CONTINUE, current, current_meta)

    def skippable_on_error(self, request: OptimizationRequest) -> bool:
        return not request.has_dimension_constraints


class SizeReducer(PipelineStage):
    """Descending palette-depth ladder. Stops at the first level that meets the budget."""

    name = 'size_reducer'
    exit_state = PipelineState.SIZE_REDUCED

    def __init__(self, processor: ImageProcessor, cancel_checker: Optional[Callable[[], bool]] = None,
                 palette_ladder: Sequence[int] = DEFAULT_PALETTE_LADDER):
        super().__init__(processor, cancel_checker)
        self.palette_ladder = list(palette_ladder)

    def reduce_size(self, asset: Any, metadata: ImageMetadata,
                    max_size_bytes: int) -> Tuple[Any, ImageMetadata, Optional[int]]:
        """
        Returns:
            Tuple of (asset, metadata, palette level used). Level is None when no
            re-encode was needed. When no level meets the budget the smallest
            level's output is returned.
        """
        if metadata.fits_budget(max_size_bytes):
            return asset, metadata, None

        best: Optional[Tuple[Any, ImageMetadata, int]] = None
        for colors in self.palette_ladder:
            self._check_cancelled()
            candidate = self.processor.recolor(asset, colors)
            candidate_meta = self.prober.probe(candidate)
            self._require_same_frames(metadata, candidate_meta, 'recolor')
            logger.info(f"Palette {colors} colors: {candidate_meta.size_mb:.2f}MB")
            if best is not None:
                self.processor.release(best[0])
            best = (candidate, candidate_meta, colors)
            if candidate_meta.fits_budget(max_size_bytes):
                logger.info(f"Budget met at {colors} colors")
                return best

        if best is None:
            return asset, metadata, None
        logger.info(f"Palette ladder exhausted: {best[1].size_mb:.2f}MB at {best[2]} colors")
        return best

    def attempt(self, asset: Any, metadata: ImageMetadata, request: OptimizationRequest) -> StageOutcome:
        reduced, reduced_meta, _level = self.reduce_size(asset, metadata, request.max_size_bytes)
        status = StageStatus.COMPLETE if reduced_meta.fits_budget(request.max_size_bytes) else StageStatus.CONTINUE
        return StageOutcome(status, reduced, reduced_meta)


class Proceed:
    """Gate decision: frame reduction was pre-approved"""

    def __repr__(self):
        return 'PROCEED'


PROCEED = Proceed()


def estimate_frame_reduction_percent(size_bytes: int, max_size_bytes: int) -> int:
    """ceil((1 - max/size) * 100) in exact integer arithmetic"""
    return -(-100 * (size_bytes - max_size_bytes) // size_bytes)


class ApprovalGate(PipelineStage):
    """Decides whether frame reduction may run. Has no side effects."""

    name = 'approval_gate'
    entry_state = PipelineState.APPROVAL_PENDING

    @staticmethod
    def decide(metadata: ImageMetadata, max_size_bytes: int,
               allow_frame_reduction: bool) -> Union[Proceed, ApprovalRequired]:
        if metadata.fits_budget(max_size_bytes):
            raise ValueError("Approval gate reached with an asset already within budget")
        if not allow_frame_reduction:
            return ApprovalRequired(
                estimated_frame_reduction_percent=estimate_frame_reduction_percent(metadata.size_bytes,
                                                                                   max_size_bytes),
                current_size_bytes=metadata.size_bytes,
                target_size_bytes=max_size_bytes,
            )
        return PROCEED

    def attempt(self, asset: Any, metadata: ImageMetadata, request: OptimizationRequest) -> StageOutcome:
        decision = self.decide(metadata, request.max_size_bytes, request.allow_frame_reduction)
        if isinstance(decision, ApprovalRequired):
            logger.info(
                f"Frame reduction needs approval: ~{decision.estimated_frame_reduction_percent}% "
                f"({metadata.size_mb:.2f}MB > {request.max_size_bytes / (1024 * 1024):.2f}MB)"
            )
            return StageOutcome(StageStatus.HALT, asset, metadata, result=decision)
        logger.info("Frame reduction pre-approved, proceeding")
        return StageOutcome(StageStatus.CONTINUE, asset, metadata)


class FrameSampler(PipelineStage):
    """Destructive last resort: uniform-stride frame dropping, ~15% per pass"""

    name = 'frame_sampler'
    entry_state = PipelineState.FRAME_REDUCING

    def __init__(self, processor: ImageProcessor, cancel_checker: Optional[Callable[[], bool]] = None,
                 keep_ratio: float = DEFAULT_FRAME_KEEP_RATIO,
                 min_frames: int = DEFAULT_MIN_FRAMES_FOR_REDUCTION):
        super().__init__(processor, cancel_checker)
        self.keep_ratio = Fraction(str(keep_ratio))
        self.min_frames = min_frames

    def frames_to_keep(self, frame_count: int) -> int:
        return max(1, int(frame_count * self.keep_ratio))

    @staticmethod
    def select_indices(frame_count: int, frames_to_keep: int) -> List[int]:
        step = -(-frame_count // frames_to_keep)
        return list(range(0, frame_count, step))

    def reduce_frames(self, asset: Any, metadata: ImageMetadata,
                      max_size_bytes: int) -> Tuple[Any, ImageMetadata]:
        if metadata.frame_count < self.min_frames:
            raise BudgetUnreachable(
                f"Only {metadata.frame_count} frame(s); frame reduction cannot help. "
                f"Best result: {metadata.size_mb:.2f}MB",
                best_size_bytes=metadata.size_bytes, frame_count=metadata.frame_count
            )

        current, current_meta = asset, metadata
        while current_meta.size_bytes > max_size_bytes and current_meta.frame_count > 1:
            self._check_cancelled()
            frame_count = current_meta.frame_count
            keep = self.frames_to_keep(frame_count)
            if keep >= frame_count:
                break
            indices = self.select_indices(frame_count, keep)
            sampled = self.processor.sample_frames(current, indices)
            sampled_meta = self.prober.probe(sampled)
            if sampled_meta.frame_count >= frame_count:
                raise ProcessingError(
                    f"Frame sampling did not reduce frame count ({frame_count} -> {sampled_meta.frame_count})",
                    operation='sample_frames'
                )
            logger.info(f"Frames {frame_count} -> {sampled_meta.frame_count}: {sampled_meta.size_mb:.2f}MB")
            if current is not asset:
                self.processor.release(current)
            current, current_meta = sampled, sampled_meta

        if current_meta.size_bytes > max_size_bytes:
            raise BudgetUnreachable(
                f"Conversion not possible without unacceptable quality loss. "
                f"Best result: {current_meta.size_mb:.2f}MB (target: {max_size_bytes / (1024 * 1024):.1f}MB)",
                best_size_bytes=current_meta.size_bytes, frame_count=current_meta.frame_count
            )
        return current, current_meta

    def attempt(self, asset: Any, metadata: ImageMetadata, request: OptimizationRequest) -> StageOutcome:
        reduced, reduced_meta = self.reduce_frames(asset, metadata, request.max_size_bytes)
        return StageOutcome(StageStatus.COMPLETE, reduced, reduced_meta)
