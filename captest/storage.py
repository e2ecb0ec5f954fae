"""
Output artifact storage.
"""

import os
import tempfile
import time
from pathlib import Path
from typing import Optional, Union

from .config import JPEG_SUFFIXES, SCREENSHOT_FILENAME_TEMPLATE
from .errors import StorageError
from .frames import EncodedImage


def resolve_output_path(name: Optional[Union[str, Path]] = None) -> Path:
    """
    Pick the output filename.

    Args:
        name: Caller-supplied name, or None for `screenshot_<timestamp>.jpg`

    Returns:
        Path that always ends in a JPEG suffix
    """
    if name is None or str(name) == "":
        return Path(SCREENSHOT_FILENAME_TEMPLATE.format(timestamp=int(time.time())))

    path = Path(name)
    if path.suffix.lower() in JPEG_SUFFIXES:
        return path
    return path.with_name(path.name + ".jpg")


def save_encoded_image(image: EncodedImage, path: Union[str, Path]) -> Path:
    """
    Write encoded image bytes to disk atomically.

    The bytes go to a temporary file beside the target, which is then renamed
    over it, so an interrupted write never leaves a partial file.

    Returns:
        Path to the saved image
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        with os.fdopen(fd, "wb") as f:
            f.write(image.data)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise StorageError(
            f"Failed to save screenshot to {path}", technical_details=str(e)
        ) from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.remove(tmp_name)

    return path
