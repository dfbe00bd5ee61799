"""
Pipeline Data Model
Request, metadata, state and result types for the animated image optimization pipeline
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from .exceptions import ValidationError

DEFAULT_MIN_DIMENSION = 180

Color = Tuple[int, int, int]


@dataclass(frozen=True)
class ImageMetadata:
    """Read-only snapshot of an asset. Re-probed after every transform."""
    width: int
    height: int
    frame_count: int
    size_bytes: int

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)

    def fits_budget(self, max_size_bytes: int) -> bool:
        return self.size_bytes <= max_size_bytes


@dataclass(frozen=True)
class OptimizationRequest:
    """
    Immutable pipeline input.

    ``min_width``/``min_height`` may be set to None to drop the floor entirely;
    ``max_width``/``max_height`` are optional ceilings.
    """
    source_asset: Any
    max_size_bytes: int
    min_width: Optional[int] = DEFAULT_MIN_DIMENSION
    min_height: Optional[int] = DEFAULT_MIN_DIMENSION
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    allow_frame_reduction: bool = False

    def __post_init__(self):
        if self.source_asset is None:
            raise ValidationError("source_asset is required", field='source_asset')
        if not isinstance(self.max_size_bytes, int) or isinstance(self.max_size_bytes, bool) \
                or self.max_size_bytes <= 0:
            raise ValidationError(f"max_size_bytes must be a positive integer, got {self.max_size_bytes!r}",
                                  field='max_size_bytes')
        for name in ('min_width', 'min_height', 'max_width', 'max_height'):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValidationError(f"{name} must be a positive integer, got {value!r}", field=name)
        if self.min_width and self.max_width and self.max_width < self.min_width:
            raise ValidationError(f"max_width ({self.max_width}) must be >= min_width ({self.min_width})",
                                  field='max_width')
        if self.min_height and self.max_height and self.max_height < self.min_height:
            raise ValidationError(f"max_height ({self.max_height}) must be >= min_height ({self.min_height})",
                                  field='max_height')

    @property
    def has_dimension_constraints(self) -> bool:
        return any(v is not None for v in (self.min_width, self.min_height, self.max_width, self.max_height))

    def dimensions_satisfied(self, width: int, height: int) -> bool:
        if self.min_width is not None and width < self.min_width:
            return False
        if self.min_height is not None and height < self.min_height:
            return False
        if self.max_width is not None and width > self.max_width:
            return False
        if self.max_height is not None and height > self.max_height:
            return False
        return True


class PipelineState(Enum):
    INIT = "init"
    PROBED = "probed"
    DIMENSION_NORMALIZED = "dimension_normalized"
    SIZE_REDUCED = "size_reduced"
    APPROVAL_PENDING = "approval_pending"
    FRAME_REDUCING = "frame_reducing"
    DONE = "done"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    PipelineState.INIT: {PipelineState.PROBED, PipelineState.FAILED},
    PipelineState.PROBED: {PipelineState.DIMENSION_NORMALIZED, PipelineState.FAILED},
    PipelineState.DIMENSION_NORMALIZED: {PipelineState.SIZE_REDUCED, PipelineState.FAILED},
    PipelineState.SIZE_REDUCED: {PipelineState.DONE, PipelineState.APPROVAL_PENDING, PipelineState.FAILED},
    PipelineState.APPROVAL_PENDING: {PipelineState.FRAME_REDUCING, PipelineState.FAILED},
    PipelineState.FRAME_REDUCING: {PipelineState.DONE, PipelineState.FAILED},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}


class IllegalTransition(RuntimeError):
    pass


@dataclass
class PipelineRun:
    """Per-invocation state tracker. Transitions are strictly forward."""
    request_id: str
    state: PipelineState = PipelineState.INIT
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.INIT])
    original_metadata: Optional[ImageMetadata] = None
    latest_metadata: Optional[ImageMetadata] = None

    def transition(self, new_state: PipelineState):
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    @property
    def finished(self) -> bool:
        return self.state in (PipelineState.DONE, PipelineState.FAILED)


class FailureReason(Enum):
    PROBE_ERROR = "probe_error"
    PROCESSING_ERROR = "processing_error"
    BUDGET_UNREACHABLE = "budget_unreachable"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Success:
    output_asset: Any
    final_metadata: ImageMetadata
    request_id: str = ''
    original_metadata: Optional[ImageMetadata] = None


@dataclass(frozen=True)
class ApprovalRequired:
    estimated_frame_reduction_percent: int
    current_size_bytes: int
    target_size_bytes: int
    request_id: str = ''
    original_metadata: Optional[ImageMetadata] = None

    @property
    def message(self) -> str:
        return (
            f"The file is still {self.current_size_bytes / (1024 * 1024):.2f}MB after optimization. "
            f"To reach {self.target_size_bytes / (1024 * 1024):.1f}MB, approximately "
            f"{self.estimated_frame_reduction_percent}% of frames may need to be removed. "
            f"This will affect animation smoothness."
        )


@dataclass(frozen=True)
class Failed:
    reason: FailureReason
    best_achieved_size_bytes: Optional[int]
    message: str = ''
    frame_count: Optional[int] = None
    request_id: str = ''
    original_metadata: Optional[ImageMetadata] = None


OptimizationResult = Union[Success, ApprovalRequired, Failed]
