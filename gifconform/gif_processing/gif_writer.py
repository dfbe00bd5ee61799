"""
Frame-preserving GIF Writer
Encodes every frame with Pillow on its own and assembles the image blocks into
one animation, so repeated (hold) frames stay separate frames
"""

import io
import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from PIL import Image

from .exceptions import ProcessingError

logger = logging.getLogger(__name__)

_EXTENSION = 0x21
_IMAGE_DESCRIPTOR = 0x2C
_TRAILER = 0x3B
_GRAPHIC_CONTROL = 0xF9

# Pillow writes every frame in full, so restoring to background between frames is safe
DEFAULT_DISPOSAL = 2
MAX_DELAY_CS = 0xFFFF


@dataclass
class _EncodedFrame:
    screen_flags: int
    background: int
    color_table: bytes
    transparency: Optional[int]
    image_block: bytes


def _u16(value: int) -> bytes:
    return struct.pack('<H', value)


def _color_table_length(flags: int) -> int:
    return 3 * (1 << ((flags & 0x07) + 1))


def _skip_sub_blocks(data: bytes, pos: int) -> int:
    while True:
        size = data[pos]
        pos += 1
        if size == 0:
            return pos
        pos += size


def _encode_frame(frame: Image.Image) -> _EncodedFrame:
    """Encode one frame as a standalone GIF and pull out its color table and image block"""
    image = frame.copy()
    image.info = {}
    buffer = io.BytesIO()
    image.save(buffer, 'GIF', optimize=True)
    data = buffer.getvalue()
    if data[:3] != b'GIF' or len(data) < 13:
        raise ProcessingError("Pillow did not produce a GIF stream", operation='write_gif')

    screen_flags = data[10]
    background = data[11]
    pos = 13
    color_table = b''
    if screen_flags & 0x80:
        end = pos + _color_table_length(screen_flags)
        color_table = data[pos:end]
        pos = end

    transparency = None
    while pos < len(data):
        marker = data[pos]
        if marker == _EXTENSION:
            if data[pos + 1] == _GRAPHIC_CONTROL and data[pos + 3] & 0x01:
                transparency = data[pos + 6]
            pos = _skip_sub_blocks(data, pos + 2)
        elif marker == _IMAGE_DESCRIPTOR:
            start = pos
            flags = data[pos + 9]
            pos += 10
            if flags & 0x80:
                pos += _color_table_length(flags)
            # LZW minimum code size precedes the data sub-blocks
            pos = _skip_sub_blocks(data, pos + 1)
            return _EncodedFrame(screen_flags, background, color_table, transparency, data[start:pos])
        elif marker == _TRAILER:
            break
        else:
            raise ProcessingError(f"Unexpected GIF block 0x{marker:02x}", operation='write_gif')
    raise ProcessingError("GIF stream contains no image data", operation='write_gif')


def _with_local_table(encoded: _EncodedFrame) -> bytes:
    """Image block that carries its own palette instead of relying on the global one"""
    block = encoded.image_block
    flags = block[9]
    if flags & 0x80:
        return block
    if not encoded.color_table:
        raise ProcessingError("Frame has no color table", operation='write_gif')
    local_flags = 0x80 | (flags & 0x40) | (encoded.screen_flags & 0x07)
    return block[:9] + bytes([local_flags]) + encoded.color_table + block[10:]


def _graphic_control(duration_ms: int, disposal: int, transparency: Optional[int]) -> bytes:
    delay = max(0, min(MAX_DELAY_CS, int(round(duration_ms / 10))))
    flags = (disposal & 0x07) << 2
    if transparency is not None:
        flags |= 0x01
    return bytes([_EXTENSION, _GRAPHIC_CONTROL, 4, flags]) + _u16(delay) + bytes([transparency or 0, 0])


def write_animation(frames: Sequence[Image.Image], durations: Sequence[int], loop: int, output_path: str,
                    disposal: int = DEFAULT_DISPOSAL):
    """
    Write ``frames`` as an animated GIF, one image block per input frame.

    Pillow's multi-frame writer folds identical consecutive frames into one;
    here each frame is encoded separately, so the frame count of the output
    always equals ``len(frames)``.

    Args:
        frames: Frames of one canvas size (any mode Pillow can save as GIF)
        durations: Per-frame display time in milliseconds
        loop: Loop count (0 = forever)
        output_path: Destination file
        disposal: GIF disposal method for every frame

    Raises:
        ProcessingError: If frames are missing, mismatched or cannot be encoded
    """
    if not frames:
        raise ProcessingError("No frames to write", operation='write_gif')
    if len(durations) != len(frames):
        raise ProcessingError(f"{len(durations)} durations for {len(frames)} frames", operation='write_gif')
    width, height = frames[0].size
    if any(frame.size != (width, height) for frame in frames):
        raise ProcessingError("Frames do not share one canvas size", operation='write_gif')

    encoded: List[_EncodedFrame] = [_encode_frame(frame) for frame in frames]
    first = encoded[0]

    data = bytearray(b'GIF89a')
    data.extend(_u16(width))
    data.extend(_u16(height))
    data.extend(bytes([first.screen_flags, first.background, 0]))
    data.extend(first.color_table)
    # Netscape loop extension
    data.extend(b'!\xFF\x0BNETSCAPE2.0\x03\x01')
    data.extend(_u16(max(0, min(0xFFFF, int(loop or 0)))))
    data.append(0)

    for index, (frame, duration) in enumerate(zip(encoded, durations)):
        data.extend(_graphic_control(duration, disposal, frame.transparency))
        data.extend(frame.image_block if index == 0 else _with_local_table(frame))
    data.append(_TRAILER)

    with open(output_path, 'wb') as handle:
        handle.write(data)
    logger.debug(f"Wrote {len(frames)} frames ({len(data)} bytes) to {output_path}")
