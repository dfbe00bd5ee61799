"""
Batch Runner
Runs many independent conversion requests on a thread pool with shared
cancellation, progress reporting and error analysis
"""

import concurrent.futures
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from tqdm import tqdm

from .conversion_service import ConversionService
from .error_handler import ErrorHandler
from .gif_processing.exceptions import ValidationError
from .gif_processing.models import ApprovalRequired, Failed, OptimizationResult, Success

logger = logging.getLogger(__name__)


@dataclass
class BatchJob:
    source: str
    output_path: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchJobResult:
    job: BatchJob
    response: Dict[str, Any]
    result: Optional[OptimizationResult] = None

    @property
    def succeeded(self) -> bool:
        return isinstance(self.result, Success)

    @property
    def needs_approval(self) -> bool:
        return isinstance(self.result, ApprovalRequired)


class BatchRunner:
    """Thread-pool driver for ConversionService. Runs share nothing but the cancel event."""

    def __init__(self, service: ConversionService, max_workers: Optional[int] = None,
                 show_progress: bool = True, error_handler: Optional[ErrorHandler] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.service = service
        if max_workers is None:
            max_workers = service.config_helper.get_performance_config()['max_workers']
        self.max_workers = max(1, int(max_workers))
        self.show_progress = show_progress
        self.error_handler = error_handler or ErrorHandler()
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

    def cancel(self):
        """Ask every in-flight run to stop at its next checkpoint"""
        if not self.cancel_event.is_set():
            logger.warning("Batch cancellation requested")
        self.cancel_event.set()

    def run(self, jobs: List[BatchJob]) -> List[BatchJobResult]:
        """
        Process ``jobs`` concurrently.

        Returns:
            One BatchJobResult per job, in submission order
        """
        if not jobs:
            return []
        workers = min(self.max_workers, len(jobs))
        logger.info(f"Processing {len(jobs)} file(s) with {workers} worker(s)")

        results: List[Optional[BatchJobResult]] = [None] * len(jobs)
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._run_one, job): index for index, job in enumerate(jobs)}
            with tqdm(total=len(jobs), desc="Converting", unit="file", disable=not self.show_progress) as pbar:
                for future in concurrent.futures.as_completed(futures):
                    results[futures[future]] = future.result()
                    pbar.update(1)

        successful = sum(1 for r in results if r.succeeded)
        pending = sum(1 for r in results if r.needs_approval)
        self.error_handler.log_batch_summary(len(jobs), successful, pending)
        return results

    def _run_one(self, job: BatchJob) -> BatchJobResult:
        basename = os.path.basename(job.source)
        try:
            result, response = self.service.process(job.source, job.output_path, job.params,
                                                    cancel_checker=self.cancel_event.is_set)
        except ValidationError as e:
            self.error_handler.handle_error(e, job.source, context='request validation')
            return BatchJobResult(job=job, response={'error': str(e)})
        except Exception as e:
            logger.debug(f"Unexpected failure for {basename}", exc_info=True)
            self.error_handler.handle_error(e, job.source, context='conversion')
            return BatchJobResult(job=job, response={'error': str(e)})

        if isinstance(result, Failed):
            self.error_handler.handle_result(result, job.source)
        elif isinstance(result, ApprovalRequired):
            logger.info(f"{basename}: {result.message}")
        return BatchJobResult(job=job, response=response, result=result)
