"""
GIF Processing Utilities
Provides safe I/O operations, tool detection and container inspection helpers
"""

import os
import time
import shutil
import subprocess
from typing import Callable, Optional, Tuple
import logging
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Pillow format name -> label reported to callers
FORMAT_LABELS = {
    'GIF': 'GIF',
    'WEBP': 'WebP',
    'AVIF': 'AVIF',
    'PNG': 'APNG',
}


def safe_file_operation(operation: Callable, *args, max_retries: int = 3, **kwargs):
    """
    Perform file operation with retry logic for Windows file locking.

    Args:
        operation: The file operation function to execute
        *args: Positional arguments for the operation
        max_retries: Maximum number of retry attempts (default: 3)
        **kwargs: Keyword arguments for the operation

    Returns:
        Result of the operation

    Raises:
        OSError, PermissionError: If operation fails after all retries
    """
    for retry in range(max_retries):
        try:
            return operation(*args, **kwargs)
        except (PermissionError, OSError) as e:
            if retry < max_retries - 1:
                logger.debug(f"File operation retry {retry + 1}/{max_retries}: {e}")
                time.sleep(0.1 * (retry + 1))  # Progressive backoff
            else:
                logger.warning(f"File operation failed after {max_retries} retries: {e}")
                raise


def is_tool_available(tool_name: str) -> bool:
    """Check if an external binary is on PATH and answers ``--version``"""
    if shutil.which(tool_name) is None:
        return False
    try:
        result = subprocess.run(
            [tool_name, "--version"],
            capture_output=True,
            text=True,
            encoding='utf-8',
            errors='replace',
            timeout=5
        )
        return result.returncode == 0
    except (OSError, subprocess.SubprocessError):
        return False


def detect_format(path: str) -> Tuple[str, bool]:
    """
    Identify the container format of an image file.

    Returns:
        Tuple of (format_label, is_animated). format_label is 'unknown' when Pillow cannot read it.
    """
    try:
        with Image.open(path) as img:
            label = FORMAT_LABELS.get(img.format or '', img.format or 'unknown')
            return label, bool(getattr(img, 'is_animated', False))
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Format detection failed for {path}: {e}")
        return 'unknown', False


def is_gif(path: str) -> bool:
    """Cheap signature check for GIF87a/GIF89a"""
    try:
        with open(path, 'rb') as handle:
            return handle.read(6) in (b'GIF87a', b'GIF89a')
    except OSError:
        return False


def validate_output(path: str, max_size_bytes: int) -> Tuple[bool, Optional[str]]:
    """
    Validate a produced GIF for basic integrity and the byte budget.

    Returns:
        Tuple of (is_valid, error_message). error_message is None if valid.
    """
    if not os.path.exists(path):
        return False, "File does not exist"
    size = os.path.getsize(path)
    if size == 0:
        return False, "File is empty"
    if size > max_size_bytes:
        return False, f"File too large: {size} bytes > {max_size_bytes} bytes"
    if not is_gif(path):
        return False, "Not a GIF file"
    return True, None
