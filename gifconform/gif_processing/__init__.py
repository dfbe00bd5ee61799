"""Animated image optimization pipeline: data model, stages, orchestrator and processing back ends."""

from .exceptions import GifProcessingError, ValidationError, ProbeError, ProcessingError, BudgetUnreachable, PipelineCancelled  # noqa: F401
from .models import ImageMetadata, OptimizationRequest, PipelineState, PipelineRun, Success, ApprovalRequired, Failed, FailureReason  # noqa: F401
from .processor import ImageProcessor  # noqa: F401
from .pil_processor import PILProcessor  # noqa: F401
from .gifsicle_processor import GifsicleProcessor  # noqa: F401
from .gif_optimizer import GifOptimizer, create_processor  # noqa: F401
