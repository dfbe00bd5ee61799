# temp_file_manager.py
import logging
import os
import threading
import uuid
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class TempArtifactScope:
    """Tracks the intermediate artifacts of one pipeline run and ensures cleanup.

    One scope per request. Nothing is shared between scopes, so concurrent runs
    never need to coordinate.
    """

    def __init__(self, request_id: str, temp_dir: Optional[str] = None,
                 disposer: Optional[Callable[[Any], None]] = None):
        self.request_id = request_id
        self.temp_dir = temp_dir or os.path.abspath('temp')
        self._disposer = disposer or remove_path
        self._artifacts: List[Any] = []
        self._lock = threading.Lock()
        self._closed = False

    def new_path(self, label: str, suffix: str = '.gif') -> str:
        """Allocate and register a uniquely named file path for this run."""
        os.makedirs(self.temp_dir, exist_ok=True)
        path = os.path.join(self.temp_dir, f"{self.request_id}_{label}_{uuid.uuid4().hex[:12]}{suffix}")
        self.track(path)
        return path

    def track(self, artifact: Any):
        """Register an artifact for cleanup."""
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Artifact scope {self.request_id} is already closed")
            if not self._owns(artifact):
                self._artifacts.append(artifact)

    def release(self, artifact: Any):
        """Dispose of an artifact early (it was superseded by a newer one)."""
        with self._lock:
            owned = self._owns(artifact)
            if owned:
                self._artifacts = [a for a in self._artifacts if not _same(a, artifact)]
        if owned:
            self._dispose(artifact)

    def is_tracked(self, artifact: Any) -> bool:
        with self._lock:
            return self._owns(artifact)

    def close(self, keep: Any = None) -> int:
        """Dispose of every tracked artifact except ``keep``. Returns the number disposed."""
        with self._lock:
            self._closed = True
            pending = [a for a in self._artifacts if keep is None or not _same(a, keep)]
            self._artifacts = []
        for artifact in pending:
            self._dispose(artifact)
        logger.debug(f"Run {self.request_id}: cleaned up {len(pending)} temporary artifact(s)")
        return len(pending)

    def count(self) -> int:
        with self._lock:
            return len(self._artifacts)

    def _owns(self, artifact: Any) -> bool:
        return any(_same(a, artifact) for a in self._artifacts)

    def _dispose(self, artifact: Any):
        try:
            self._disposer(artifact)
            logger.debug(f"Cleaned up temporary artifact: {artifact}")
        except Exception as e:
            logger.error(f"Failed to clean up temporary artifact {artifact}: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if not self._closed:
            self.close()
        return False


def _same(a, b) -> bool:
    if a is b:
        return True
    return isinstance(a, (str, os.PathLike)) and isinstance(b, (str, os.PathLike)) and os.fspath(a) == os.fspath(b)


def remove_path(path):
    """Delete a file artifact if it still exists."""
    if isinstance(path, (str, os.PathLike)) and os.path.exists(path):
        os.remove(path)
