"""
GIF Processing Exceptions
Error taxonomy shared by the optimization pipeline and its processing back ends
"""


class GifProcessingError(Exception):
    """Base exception for GIF processing errors"""
    pass


class ValidationError(GifProcessingError):
    """Request parameters are malformed or out of range. Raised before any processing step runs."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class ProbeError(GifProcessingError):
    """Asset could not be parsed as an animated image container"""
    pass


class ProcessingError(GifProcessingError):
    """A transform call into the processing back end failed"""

    def __init__(self, message: str, operation: str = None):
        super().__init__(message)
        self.operation = operation


class BudgetUnreachable(GifProcessingError):
    """Every stage was exhausted and the byte budget is still not met"""

    def __init__(self, message: str, best_size_bytes: int, frame_count: int = None):
        super().__init__(message)
        self.best_size_bytes = best_size_bytes
        self.frame_count = frame_count


class PipelineCancelled(GifProcessingError):
    """The caller abandoned the request before it finished"""
    pass
