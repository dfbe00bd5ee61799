"""
Error Handling Module
Provides centralized error categorization, logging, and suggestions for pipeline
failures in batch operations.
"""

import logging
import threading
from typing import Dict, Any, List, Optional
from dataclasses import dataclass
from enum import Enum

from .gif_processing.exceptions import (
    BudgetUnreachable, PipelineCancelled, ProbeError, ProcessingError, ValidationError,
)
from .gif_processing.models import Failed, FailureReason

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of processing errors for better handling and reporting"""
    VALIDATION = "validation"
    PROBE = "probe"
    PROCESSING = "processing"
    BUDGET_UNREACHABLE = "budget_unreachable"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    MEMORY = "memory"
    PERMISSION = "permission"
    GENERAL = "general"


_CATEGORY_DETAILS = {
    ErrorCategory.VALIDATION: ('warning', False, [
        "Check request parameters (size 0.1-50 MB, min 1-2000 px, max <= 4000 px)",
        "Make sure max dimensions are not smaller than min dimensions",
    ]),
    ErrorCategory.PROBE: ('error', False, [
        "Check file integrity",
        "Supply an animated GIF, WebP or AVIF",
    ]),
    ErrorCategory.PROCESSING: ('error', True, [
        "Retry with the Pillow back end: --backend pillow",
        "Check gifsicle installation",
    ]),
    ErrorCategory.BUDGET_UNREACHABLE: ('error', False, [
        "Increase the maximum file size",
        "Set smaller max dimensions",
        "Allow frame reduction: --allow-frame-reduction",
    ]),
    ErrorCategory.CANCELLED: ('warning', True, [
        "Resubmit the request with the original file",
    ]),
    ErrorCategory.TIMEOUT: ('warning', True, [
        "Set smaller max dimensions",
        "Increase gifsicle_timeout_seconds",
    ]),
    ErrorCategory.MEMORY: ('error', False, [
        "Set smaller max dimensions",
        "Reduce parallel workers: -j 1",
    ]),
    ErrorCategory.PERMISSION: ('error', False, [
        "Check file permissions",
        "Ensure output directory is writable",
    ]),
    ErrorCategory.GENERAL: ('error', True, [
        "Retry operation",
        "Check logs for more details",
    ]),
}

_REASON_CATEGORIES = {
    FailureReason.PROBE_ERROR: ErrorCategory.PROBE,
    FailureReason.PROCESSING_ERROR: ErrorCategory.PROCESSING,
    FailureReason.BUDGET_UNREACHABLE: ErrorCategory.BUDGET_UNREACHABLE,
    FailureReason.CANCELLED: ErrorCategory.CANCELLED,
}


@dataclass
class ErrorRecord:
    """Structured representation of a processing failure"""
    category: ErrorCategory
    message: str
    file_path: str
    exception_type: str
    severity: str  # 'warning', 'error', 'critical'
    suggestions: List[str]
    retryable: bool = True
    context: Optional[str] = None

    def get_short_description(self) -> str:
        """Get concise error description for logging"""
        return f"{self.category.value}: {self.message}"

    def get_detailed_description(self) -> str:
        """Get detailed error description with suggestions"""
        base = f"Error in {self.file_path}: {self.message}"
        if self.context:
            base += f" (Context: {self.context})"

        if self.suggestions:
            base += "\nSuggestions:\n" + "\n".join(f"  • {s}" for s in self.suggestions)

        return base


def _build_record(category: ErrorCategory, message: str, file_path: str, exception_type: str,
                  context: Optional[str]) -> ErrorRecord:
    severity, retryable, suggestions = _CATEGORY_DETAILS[category]
    return ErrorRecord(
        category=category,
        message=message,
        file_path=file_path,
        exception_type=exception_type,
        severity=severity,
        suggestions=list(suggestions),
        retryable=retryable,
        context=context
    )


class ErrorHandler:
    """Centralized error handling and categorization for batch processing"""

    def __init__(self):
        self._lock = threading.Lock()
        self.error_counts = {category: 0 for category in ErrorCategory}
        self.processed_errors: List[ErrorRecord] = []

    def categorize_error(self, exception: Exception, file_path: str,
                         context: str = None) -> ErrorRecord:
        """Categorize an exception into a structured ErrorRecord"""
        error_msg = str(exception)
        exception_type = type(exception).__name__

        if isinstance(exception, ValidationError):
            category = ErrorCategory.VALIDATION
        elif isinstance(exception, ProbeError):
            category = ErrorCategory.PROBE
        elif isinstance(exception, BudgetUnreachable):
            category = ErrorCategory.BUDGET_UNREACHABLE
        elif isinstance(exception, PipelineCancelled):
            category = ErrorCategory.CANCELLED
        elif isinstance(exception, PermissionError):
            category = ErrorCategory.PERMISSION
        elif isinstance(exception, MemoryError):
            category = ErrorCategory.MEMORY
        else:
            # Pattern-based categorization for other errors
            error_lower = error_msg.lower()
            if 'timeout' in error_lower or 'timed out' in error_lower:
                category = ErrorCategory.TIMEOUT
            elif 'memory' in error_lower:
                category = ErrorCategory.MEMORY
            elif 'permission' in error_lower or 'access denied' in error_lower:
                category = ErrorCategory.PERMISSION
            elif isinstance(exception, ProcessingError):
                category = ErrorCategory.PROCESSING
            else:
                category = ErrorCategory.GENERAL

        return _build_record(category, error_msg, file_path, exception_type, context)

    def categorize_result(self, result: Failed, file_path: str, context: str = None) -> ErrorRecord:
        """Categorize a Failed pipeline result"""
        category = _REASON_CATEGORIES.get(result.reason, ErrorCategory.GENERAL)
        if category is ErrorCategory.PROCESSING and 'timed out' in result.message.lower():
            category = ErrorCategory.TIMEOUT
        return _build_record(category, result.message or result.reason.value, file_path,
                             result.reason.value, context)

    def handle_error(self, exception: Exception, file_path: str,
                     context: str = None, continue_processing: bool = True) -> ErrorRecord:
        """Handle an error by categorizing it and logging appropriately"""
        return self._record(self.categorize_error(exception, file_path, context), continue_processing)

    def handle_result(self, result: Failed, file_path: str, context: str = None,
                      continue_processing: bool = True) -> ErrorRecord:
        """Record a Failed pipeline result"""
        return self._record(self.categorize_result(result, file_path, context), continue_processing)

    def _record(self, error: ErrorRecord, continue_processing: bool) -> ErrorRecord:
        with self._lock:
            self.processed_errors.append(error)
            self.error_counts[error.category] += 1

        # Log based on severity
        if error.severity == 'critical':
            logger.error(f"CRITICAL ERROR: {error.get_short_description()}")
            logger.error(f"Details: {error.get_detailed_description()}")
        elif error.severity == 'error':
            logger.error(f"ERROR: {error.get_short_description()}")
            logger.info(f"Suggestions: {'; '.join(error.suggestions[:2])}")
        else:
            logger.warning(f"WARNING: {error.get_short_description()}")

        # Log continuation message for batch processing
        if continue_processing:
            logger.info(f"Continuing batch processing despite {error.category.value} error")

        return error

    def get_error_summary(self) -> Dict[str, Any]:
        """Get comprehensive error summary for batch processing"""
        with self._lock:
            errors = list(self.processed_errors)
            counts = dict(self.error_counts)
        total_errors = len(errors)
        if total_errors == 0:
            return {'total_errors': 0, 'categories': {}, 'success_rate': 100.0}

        category_counts = {cat.value: count for cat, count in counts.items() if count > 0}

        # Calculate severity distribution
        severity_counts: Dict[str, int] = {}
        for error in errors:
            severity_counts[error.severity] = severity_counts.get(error.severity, 0) + 1
        retryable_count = sum(1 for error in errors if error.retryable)

        return {
            'total_errors': total_errors,
            'categories': category_counts,
            'severity_distribution': severity_counts,
            'most_common_category': max(category_counts.items(), key=lambda x: x[1])[0] if category_counts else None,
            'critical_errors': severity_counts.get('critical', 0),
            'retryable_errors': retryable_count,
            'non_retryable_errors': total_errors - retryable_count
        }

    def get_top_failures(self, limit: int = 3) -> List[Dict[str, Any]]:
        """Return ranked failure categories with a representative message for reporting."""
        with self._lock:
            errors = list(self.processed_errors)
        if limit <= 0 or not errors:
            return []
        category_counts: Dict[str, int] = {}
        sample_messages: Dict[str, str] = {}
        for error in errors:
            key = error.category.value
            category_counts[key] = category_counts.get(key, 0) + 1
            # Capture the latest message for the category
            sample_messages[key] = error.message
        sorted_categories = sorted(category_counts.items(), key=lambda item: item[1], reverse=True)[:limit]
        return [
            {'category': category, 'count': count, 'sample_message': sample_messages.get(category, '')}
            for category, count in sorted_categories
        ]

    def log_batch_summary(self, total_files: int, successful_files: int, pending_approvals: int = 0):
        """Log batch processing summary with error analysis"""
        failed_files = total_files - successful_files - pending_approvals
        success_rate = (successful_files / total_files * 100) if total_files > 0 else 0

        logger.info("=== BATCH PROCESSING SUMMARY ===")
        logger.info(f"Total files: {total_files}, Successful: {successful_files}, "
                    f"Awaiting approval: {pending_approvals}, Failed: {failed_files}")
        logger.info(f"Success rate: {success_rate:.1f}%")

        if failed_files <= 0:
            return

        logger.error("Error breakdown by category:")
        for category, count in self.error_counts.items():
            if count > 0:
                percentage = (count / failed_files) * 100
                logger.error(f"  • {category.value}: {count} files ({percentage:.1f}% of failures)")
                for suggestion in self.get_category_suggestions(category):
                    logger.info(f"    - {suggestion}")

    @staticmethod
    def get_category_suggestions(category: ErrorCategory) -> List[str]:
        """Get specific suggestions for an error category"""
        return list(_CATEGORY_DETAILS[category][2])

    def reset(self):
        """Reset error tracking for new batch processing session"""
        with self._lock:
            self.error_counts = {category: 0 for category in ErrorCategory}
            self.processed_errors = []
