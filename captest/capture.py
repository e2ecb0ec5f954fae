"""
Screen and window capture into raw BGRA frames.
"""

import sys
from typing import List, Protocol

import mss
from mss.exception import ScreenShotError

from .errors import CaptureError, PermissionDeniedError, TargetNotFoundError
from .frames import DisplayInfo, RawFrame


class CaptureProvider(Protocol):
    """Supplies one raw BGRA frame for a display or a window."""

    def capture_display(self, index: int) -> RawFrame: ...

    def capture_window(self, window_id: int) -> RawFrame: ...


def list_displays() -> List[DisplayInfo]:
    """
    Get the geometry of all physical screens.

    Returns:
        List of DisplayInfo, indexed from 0
    """
    try:
        with mss.mss() as sct:
            # monitors[0] is the union of all screens
            monitors = sct.monitors[1:]
    except ScreenShotError as e:
        raise CaptureError("Could not enumerate screens", technical_details=str(e)) from e

    return [
        DisplayInfo(
            index=i,
            left=int(m["left"]),
            top=int(m["top"]),
            width=int(m["width"]),
            height=int(m["height"]),
        )
        for i, m in enumerate(monitors)
    ]


class MssCaptureProvider:
    """
    Capture provider built on mss for displays and Quartz for macOS windows.

    Usage:
        provider = MssCaptureProvider()
        frame = provider.capture_display(0)
    """

    def capture_display(self, index: int) -> RawFrame:
        """
        Capture screen `index` (0-based).

        Raises:
            TargetNotFoundError: If the screen does not exist
            CaptureError: If the grab fails
        """
        try:
            with mss.mss() as sct:
                monitors = sct.monitors[1:]
                if index < 0 or index >= len(monitors):
                    raise TargetNotFoundError(
                        f"Screen {index} not found. "
                        f"Available screens: 0-{max(len(monitors) - 1, 0)}"
                    )
                shot = sct.grab(monitors[index])
        except ScreenShotError as e:
            raise CaptureError(
                f"Failed to capture screen {index}", technical_details=str(e)
            ) from e

        return RawFrame(
            width=shot.width,
            height=shot.height,
            stride=shot.width * 4,
            pixels=bytes(shot.bgra),
        )

    def capture_window(self, window_id: int) -> RawFrame:
        """
        Capture a single window by its window-server ID (macOS only).

        Raises:
            PermissionDeniedError: If screen recording is not allowed
            TargetNotFoundError: If the window does not exist
            CaptureError: On other platforms or if the grab fails
        """
        if sys.platform != "darwin":
            raise CaptureError(
                "Window capture is only supported on macOS",
                suggestions=["Capture the whole screen instead"],
            )

        try:
            import Quartz
        except ImportError as e:
            raise CaptureError(
                "Quartz bindings not installed",
                technical_details=str(e),
                suggestions=["Run: pip install pyobjc-framework-Quartz"],
            ) from e

        preflight = getattr(Quartz, "CGPreflightScreenCaptureAccess", None)
        if preflight is not None and not preflight():
            request = getattr(Quartz, "CGRequestScreenCaptureAccess", None)
            if request is not None:
                request()
            raise PermissionDeniedError(
                "No screen recording permission. Please grant it and try again"
            )

        image = Quartz.CGWindowListCreateImage(
            Quartz.CGRectNull,
            Quartz.kCGWindowListOptionIncludingWindow,
            window_id,
            Quartz.kCGWindowImageBoundsIgnoreFraming,
        )
        if image is None:
            raise TargetNotFoundError(f"Window {window_id} not found")

        width = Quartz.CGImageGetWidth(image)
        height = Quartz.CGImageGetHeight(image)
        if width == 0 or height == 0:
            raise TargetNotFoundError(f"Window {window_id} not found")

        data = Quartz.CGDataProviderCopyData(Quartz.CGImageGetDataProvider(image))
        if data is None:
            raise CaptureError(f"Failed to read pixels of window {window_id}")

        # Quartz rows are padded for alignment, keep the real stride
        return RawFrame(
            width=int(width),
            height=int(height),
            stride=int(Quartz.CGImageGetBytesPerRow(image)),
            pixels=bytes(data),
        )
