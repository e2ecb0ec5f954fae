"""
Pixel normalization and image encoding.

Both transforms are pure: they never touch the filesystem or print.
"""

import io

import numpy as np
from PIL import Image

from .config import DEFAULT_JPEG_QUALITY
from .errors import BufferTooSmallError, EncodeError, InvalidDimensionsError
from .frames import EncodedImage, RawFrame, RgbImage


BGRA_BYTES_PER_PIXEL = 4


def normalize_frame(frame: RawFrame) -> RgbImage:
    """
    Convert a BGRA frame with arbitrary row stride into packed RGB.

    Args:
        frame: RawFrame whose stride is at least width * 4

    Returns:
        RgbImage of exactly width * height * 3 bytes

    Raises:
        InvalidDimensionsError: If width or height is zero, or stride < width * 4
        BufferTooSmallError: If the buffer holds fewer than stride * height bytes
    """
    width, height, stride = frame.width, frame.height, frame.stride
    row_bytes = width * BGRA_BYTES_PER_PIXEL

    if width <= 0 or height <= 0 or stride < row_bytes:
        raise InvalidDimensionsError(width, height, stride)

    expected = stride * height
    if len(frame.pixels) < expected:
        raise BufferTooSmallError(len(frame.pixels), expected)

    rows = np.frombuffer(frame.pixels, dtype=np.uint8, count=expected).reshape(
        height, stride
    )
    # Drop trailing stride padding, then reorder B=0, G=1, R=2 -> R, G, B
    bgra = rows[:, :row_bytes].reshape(height, width, BGRA_BYTES_PER_PIXEL)
    rgb = np.ascontiguousarray(bgra[:, :, [2, 1, 0]])

    return RgbImage(width=width, height=height, pixels=rgb.tobytes())


def validate_quality(quality: int) -> int:
    """Check a JPEG quality value, returning it unchanged."""
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise ValueError(f"JPEG quality must be an integer, got {quality!r}")
    if not 0 <= quality <= 100:
        raise ValueError(f"JPEG quality must be within [0, 100], got {quality}")
    return quality


def encode_jpeg(image: RgbImage, quality: int = DEFAULT_JPEG_QUALITY) -> EncodedImage:
    """
    Encode an RGB image as baseline JPEG.

    The output is byte-identical for identical pixels and quality.

    Raises:
        ValueError: If quality is outside [0, 100]
        EncodeError: If Pillow fails to encode the image
    """
    validate_quality(quality)

    buffered = io.BytesIO()
    try:
        pil_image = Image.frombytes("RGB", image.size, image.pixels)
        pil_image.save(
            buffered,
            format="JPEG",
            quality=quality,
            optimize=False,
            progressive=False,
        )
    except (OSError, ValueError) as e:
        raise EncodeError(
            "Failed to encode image as JPEG",
            technical_details=f"{type(e).__name__}: {e}",
        ) from e

    return EncodedImage(data=buffered.getvalue(), format="jpeg")
