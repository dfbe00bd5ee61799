"""
PIL/Pillow-based GIF Processing
Implements the processing capability with Pillow: palette quantization,
resampling, canvas padding, frame sampling and format conversion
"""

import contextlib
import os
import uuid
from typing import Any, List, Sequence, Tuple
import logging

import numpy as np
from PIL import Image, ImageSequence, UnidentifiedImageError

from .exceptions import ProbeError, ProcessingError
from .gif_utils import is_gif, safe_file_operation
from .gif_writer import write_animation
from .models import Color, ImageMetadata
from .processor import ImageProcessor
from ..temp_file_manager import remove_path

logger = logging.getLogger(__name__)

DEFAULT_FRAME_DURATION_MS = 100
# Longest side of each sampled frame used to build the shared palette
PALETTE_SAMPLE_EDGE = 256


@contextlib.contextmanager
def _processing_step(operation: str, asset: Any):
    """Translate codec failures into ProcessingError for one operation"""
    try:
        yield
    except ProcessingError:
        raise
    except (OSError, ValueError, MemoryError) as e:
        logger.warning(f"{operation} failed for {asset}: {e}")
        raise ProcessingError(f"{operation} failed: {e}", operation=operation) from e


class PILProcessor(ImageProcessor):
    """Pillow implementation of the processing capability over GIF files"""

    def __init__(self, temp_dir: str = None, dither: bool = True):
        """
        Initialize processor.

        Args:
            temp_dir: Directory for outputs when no artifact scope is bound
            dither: Apply Floyd-Steinberg dithering when mapping to a reduced palette
        """
        super().__init__()
        self.temp_dir = temp_dir or os.path.abspath('temp')
        self.dither = dither

    # ------------------------------------------------------------------ I/O

    def _new_output(self, label: str) -> str:
        if self._scope is not None:
            return self._scope.new_path(label, '.gif')
        os.makedirs(self.temp_dir, exist_ok=True)
        return os.path.join(self.temp_dir, f"{label}_{uuid.uuid4().hex[:12]}.gif")

    @staticmethod
    def _read_frames(path: str, mode: str = 'RGBA') -> Tuple[List[Image.Image], List[int], int]:
        """Load every composited frame plus per-frame durations and the loop count"""
        frames = []
        durations = []
        with Image.open(path) as img:
            loop = img.info.get('loop', 0)
            for frame in ImageSequence.Iterator(img):
                durations.append(int(frame.info.get('duration', DEFAULT_FRAME_DURATION_MS) or DEFAULT_FRAME_DURATION_MS))
                frames.append(frame.convert(mode))
        if not frames:
            raise ProcessingError(f"No frames found in {path}")
        return frames, durations, loop

    @staticmethod
    def _write_frames(frames: List[Image.Image], durations: List[int], loop: int, output_path: str):
        write_animation(frames, durations, loop, output_path)
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise ProcessingError(f"Encoder produced no output at {output_path}")

    # ------------------------------------------------------------ capability

    def probe(self, asset: Any) -> ImageMetadata:
        try:
            size_bytes = os.path.getsize(asset)
            with Image.open(asset) as img:
                width, height = img.size
                frame_count = int(getattr(img, 'n_frames', 1))
        except (UnidentifiedImageError, OSError, TypeError, ValueError) as e:
            raise ProbeError(f"Cannot read animated image {asset}: {e}") from e
        if width <= 0 or height <= 0 or frame_count < 1:
            raise ProbeError(f"Invalid image geometry in {asset}: {width}x{height}, {frame_count} frames")
        return ImageMetadata(width=width, height=height, frame_count=frame_count, size_bytes=size_bytes)

    def resize(self, asset: Any, width: int, height: int) -> Any:
        with _processing_step('resize', asset):
            frames, durations, loop = self._read_frames(asset)
            resized = [f.resize((width, height), Image.Resampling.LANCZOS) for f in frames]
            output_path = self._new_output('resize')
            self._write_frames(resized, durations, loop, output_path)
            logger.debug(f"Resized {len(frames)} frames to {width}x{height}: {output_path}")
            return output_path

    def recolor(self, asset: Any, color_count: int) -> Any:
        """
        Quantize every frame against one shared adaptive palette.

        The palette is built from ~10 sampled frames stacked into a single
        composite, then applied to all frames so the GIF can use a single
        global color table.
        """
        color_count = max(2, min(256, int(color_count)))
        with _processing_step('recolor', asset):
            frames, durations, loop = self._read_frames(asset, mode='RGB')

            sample_frames = frames[::max(1, len(frames) // 10)] or frames[:1]
            thumbs = []
            for frame in sample_frames:
                thumb = frame.copy()
                thumb.thumbnail((PALETTE_SAMPLE_EDGE, PALETTE_SAMPLE_EDGE))
                thumbs.append(thumb)
            composite = Image.new('RGB', (max(t.size[0] for t in thumbs), sum(t.size[1] for t in thumbs)))
            y_offset = 0
            for thumb in thumbs:
                composite.paste(thumb, (0, y_offset))
                y_offset += thumb.size[1]

            quantized_composite = composite.quantize(colors=color_count, method=Image.Quantize.MEDIANCUT,
                                                     dither=Image.Dither.NONE)
            palette_img = Image.new('P', (1, 1))
            palette_img.putpalette(quantized_composite.getpalette()[:color_count * 3])

            dither = Image.Dither.FLOYDSTEINBERG if self.dither else Image.Dither.NONE
            optimized_frames = [frame.quantize(palette=palette_img, dither=dither) for frame in frames]

            output_path = self._new_output(f'colors{color_count}')
            self._write_frames(optimized_frames, durations, loop, output_path)
            logger.debug(f"Recolored to {color_count} colors: {output_path}")
            return output_path

    def pad_canvas(self, asset: Any, width: int, height: int, fill_color: Color) -> Any:
        with _processing_step('pad_canvas', asset):
            frames, durations, loop = self._read_frames(asset)
            fill = tuple(fill_color[:3]) + (255,)
            padded = []
            for frame in frames:
                fw, fh = frame.size
                if fw > width or fh > height:
                    raise ProcessingError(f"Cannot pad {fw}x{fh} onto smaller canvas {width}x{height}",
                                          operation='pad_canvas')
                canvas = Image.new('RGBA', (width, height), fill)
                canvas.paste(frame, ((width - fw) // 2, (height - fh) // 2))
                padded.append(canvas)
            output_path = self._new_output('pad')
            self._write_frames(padded, durations, loop, output_path)
            logger.debug(f"Padded to {width}x{height} with fill {fill[:3]}: {output_path}")
            return output_path

    def sample_frames(self, asset: Any, indices: Sequence[int]) -> Any:
        """Keep the frames at ``indices``; dropped frame time is folded into the preceding kept frame."""
        with _processing_step('sample_frames', asset):
            frames, durations, loop = self._read_frames(asset)
            keep = sorted(set(i for i in indices if 0 <= i < len(frames)))
            if not keep:
                raise ProcessingError("Frame selection is empty", operation='sample_frames')
            kept_frames = []
            kept_durations = []
            for pos, index in enumerate(keep):
                span_end = keep[pos + 1] if pos + 1 < len(keep) else len(frames)
                span_start = 0 if pos == 0 else index
                kept_frames.append(frames[index])
                kept_durations.append(sum(durations[span_start:span_end]))
            output_path = self._new_output(f'frames{len(keep)}')
            self._write_frames(kept_frames, kept_durations, loop, output_path)
            logger.debug(f"Sampled {len(keep)}/{len(frames)} frames: {output_path}")
            return output_path

    def dominant_edge_color(self, asset: Any) -> Color:
        """Most frequent color along the border of the first frame"""
        with _processing_step('dominant_edge_color', asset):
            with Image.open(asset) as img:
                first = np.asarray(img.convert('RGB'))
            border = np.concatenate([first[0, :], first[-1, :], first[:, 0], first[:, -1]])
            colors, counts = np.unique(border.reshape(-1, 3), axis=0, return_counts=True)
            r, g, b = colors[int(counts.argmax())]
            return int(r), int(g), int(b)

    def needs_conversion(self, asset: Any) -> bool:
        return not is_gif(asset)

    def to_gif(self, asset: Any) -> Any:
        """Coalesce an animated WebP/AVIF/APNG (anything Pillow reads) into a GIF"""
        with _processing_step('to_gif', asset):
            try:
                frames, durations, loop = self._read_frames(asset)
            except UnidentifiedImageError as e:
                raise ProcessingError(f"Unsupported image format: {e}", operation='to_gif') from e
            output_path = self._new_output('converted')
            self._write_frames(frames, durations, loop, output_path)
            logger.info(f"Converted {os.path.basename(str(asset))} to GIF ({len(frames)} frames)")
            return output_path

    def discard(self, asset: Any):
        safe_file_operation(remove_path, asset)
