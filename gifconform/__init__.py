"""gifconform package root.

Export primary classes and CLI for convenience when installed via pip.
"""

from .cli import main as cli_main  # noqa: F401
from .conversion_service import ConversionService  # noqa: F401
from .batch_runner import BatchRunner, BatchJob, BatchJobResult  # noqa: F401
from .config_manager import ConfigManager  # noqa: F401
from .error_handler import ErrorHandler, ErrorCategory  # noqa: F401
from .gif_processing.gif_optimizer import GifOptimizer, create_processor  # noqa: F401
from .gif_processing.models import OptimizationRequest, ImageMetadata, Success, ApprovalRequired, Failed, FailureReason  # noqa: F401
