"""
Processing Capability Interface
Abstract black-box image operations consumed by the optimization pipeline
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, Sequence
import logging

from .models import Color, ImageMetadata

logger = logging.getLogger(__name__)


class ImageProcessor(ABC):
    """
    Asset-in/asset-out image operations.

    Implementations never mutate their input; every transform returns a new
    asset. When bound to an artifact scope (see ``bind``) each new asset is
    registered with that scope so the pipeline can dispose of it later.
    """

    def __init__(self):
        self._scope = None

    def bind(self, scope) -> 'ImageProcessor':
        """Return a copy of this processor whose outputs are tracked by ``scope``."""
        bound = copy.copy(self)
        bound._scope = scope
        return bound

    @property
    def scope(self):
        return self._scope

    def _track(self, asset: Any) -> Any:
        if self._scope is not None:
            self._scope.track(asset)
        return asset

    @abstractmethod
    def probe(self, asset: Any) -> ImageMetadata:
        """Read width, height, frame count and byte size. Raises ProbeError."""
        pass

    @abstractmethod
    def resize(self, asset: Any, width: int, height: int) -> Any:
        """Scale every frame to exactly ``width`` x ``height``"""
        pass

    @abstractmethod
    def recolor(self, asset: Any, color_count: int) -> Any:
        """Re-encode with at most ``color_count`` palette entries"""
        pass

    @abstractmethod
    def pad_canvas(self, asset: Any, width: int, height: int, fill_color: Color) -> Any:
        """Expand the canvas to ``width`` x ``height`` with content centered"""
        pass

    @abstractmethod
    def sample_frames(self, asset: Any, indices: Sequence[int]) -> Any:
        """Keep only the frames at ``indices`` (ascending)"""
        pass

    @abstractmethod
    def dominant_edge_color(self, asset: Any) -> Color:
        """Representative border color of the first frame"""
        pass

    def needs_conversion(self, asset: Any) -> bool:
        """Whether ``asset`` must go through ``to_gif`` before processing"""
        return False

    def to_gif(self, asset: Any) -> Any:
        """Coalesce a foreign animated container into a GIF"""
        return asset

    def release(self, asset: Any):
        """Mark an intermediate asset as superseded. Assets this run did not create are left alone."""
        if self._scope is not None:
            self._scope.release(asset)

    def discard(self, asset: Any):
        """Destroy an intermediate asset produced by this processor"""
        pass
