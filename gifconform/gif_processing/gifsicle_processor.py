"""
Gifsicle-backed GIF Processing
Resizing, palette reduction and frame selection through the gifsicle binary; the
remaining operations fall through to Pillow
"""

import os
import subprocess
from typing import Any, List, Sequence
import logging

from .exceptions import ProcessingError
from .gif_utils import is_tool_available
from .pil_processor import PILProcessor

logger = logging.getLogger(__name__)


class GifsicleProcessor(PILProcessor):
    """Processor that shells out to gifsicle for resize, recolor and frame sampling"""

    def __init__(self, temp_dir: str = None, optimize_level: int = 3, timeout_seconds: int = 120,
                 binary: str = 'gifsicle', dither: bool = True):
        super().__init__(temp_dir=temp_dir, dither=dither)
        self.optimize_level = max(1, min(3, int(optimize_level)))
        self.timeout_seconds = timeout_seconds
        self.binary = binary

    def is_available(self) -> bool:
        return is_tool_available(self.binary)

    def resize(self, asset: Any, width: int, height: int) -> Any:
        output_path = self._new_output('resize')
        self._run_gifsicle('resize', ["--resize", f"{int(width)}x{int(height)}", asset], output_path)
        return output_path

    def recolor(self, asset: Any, color_count: int) -> Any:
        color_count = max(2, min(256, int(color_count)))
        output_path = self._new_output(f'colors{color_count}')
        args = [
            f"--optimize={self.optimize_level}",
            "--colors", str(color_count),
        ]
        if self.dither:
            args.append("--dither")
        args.append(asset)
        self._run_gifsicle('recolor', args, output_path)
        return output_path

    def sample_frames(self, asset: Any, indices: Sequence[int]) -> Any:
        keep = sorted(set(int(i) for i in indices if int(i) >= 0))
        if not keep:
            raise ProcessingError("Frame selection is empty", operation='sample_frames')
        output_path = self._new_output(f'frames{len(keep)}')
        args: List[str] = [asset] + [f"#{i}" for i in keep]
        self._run_gifsicle('sample_frames', args, output_path)
        return output_path

    def _run_gifsicle(self, operation: str, args: List[str], output_path: str):
        """Execute gifsicle writing to ``output_path``; raise ProcessingError on any failure"""
        cmd = [self.binary, "--no-warnings"] + [str(a) for a in args] + ["--output", output_path]
        logger.debug(f"gifsicle command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=self.timeout_seconds
            )
        except subprocess.TimeoutExpired as e:
            raise ProcessingError(f"gifsicle timed out after {self.timeout_seconds}s", operation=operation) from e
        except FileNotFoundError as e:
            raise ProcessingError("gifsicle not found. Is gifsicle installed?", operation=operation) from e

        if result.returncode != 0:
            stderr_preview = result.stderr[:500] if result.stderr else "No stderr output"
            logger.warning(f"gifsicle failed with return code {result.returncode}\n  stderr: {stderr_preview}")
            raise ProcessingError(f"gifsicle exited with {result.returncode}: {stderr_preview}", operation=operation)

        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise ProcessingError(f"gifsicle produced no output at {output_path}", operation=operation)
