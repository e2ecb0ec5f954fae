"""
Error hierarchy for the capture-to-artifact pipeline.

Every stage raises a subclass of CaptestError. Fatal errors (capture and
normalization) abort the whole run; everything else is caught at the branch
boundary of the pipeline driver and reported against the requested mode.
"""

from typing import List, Optional


class CaptestError(Exception):
    """
    Base exception for all pipeline errors.

    Subclasses set `fatal` and `default_suggestions` to describe how the
    failure should be reported.
    """

    fatal = False
    default_suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        *,
        suggestions: Optional[List[str]] = None,
        technical_details: Optional[str] = None,
    ):
        super().__init__(message)
        self.user_message = message
        self.suggestions = suggestions or self.default_suggestions.copy()
        self.technical_details = technical_details

    @property
    def kind(self) -> str:
        """Short machine-readable name used in reports."""
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.user_message,
            "technical_details": self.technical_details,
            "suggestions": self.suggestions,
        }


# === Capture Errors ===


class CaptureError(CaptestError):
    """Raised when no frame could be captured."""

    fatal = True
    default_suggestions = [
        "Check that the screen or window still exists",
        "Run `captest list` to see the available screens",
    ]


class TargetNotFoundError(CaptureError):
    """Raised when the requested display or window does not exist."""


class PermissionDeniedError(CaptureError):
    """Raised when the OS refuses screen recording."""

    default_suggestions = [
        "Grant screen recording permission in the system settings",
        "Restart the terminal after granting permission",
    ]


# === Normalize Errors ===


class NormalizeError(CaptestError):
    """Raised when a captured frame violates the BGRA buffer contract."""

    fatal = True


class InvalidDimensionsError(NormalizeError):
    """Raised when a frame has zero width/height or a stride below width*4."""

    def __init__(self, width: int, height: int, stride: int):
        super().__init__(
            f"Invalid frame dimensions {width}x{height} (stride {stride})",
            technical_details=f"width={width} height={height} stride={stride}",
        )
        self.width = width
        self.height = height
        self.stride = stride


class BufferTooSmallError(NormalizeError):
    """Raised when the pixel buffer is shorter than stride*height."""

    def __init__(self, actual: int, expected: int):
        super().__init__(
            f"Pixel buffer too small: {actual} bytes, expected at least {expected}",
            technical_details=f"actual={actual} expected={expected}",
        )
        self.actual = actual
        self.expected = expected


# === Encode / Storage Errors ===


class EncodeError(CaptestError):
    """Raised when the JPEG encoder fails on a valid RGB image."""


class StorageError(CaptestError):
    """Raised when the output artifact cannot be written."""

    default_suggestions = [
        "Check that you have write permission to the location",
        "Ensure enough disk space is available",
    ]


# === OCR Errors ===


class OcrEngineError(CaptestError):
    """Raised when the text detection/recognition engine fails."""

    default_suggestions = [
        "Check that paddleocr and its model files are installed",
    ]


class DetectionError(OcrEngineError):
    """Raised when text detection fails."""


class RecognitionError(OcrEngineError):
    """Raised when text recognition fails for a line."""


# === Analysis Errors ===


class AnalysisError(CaptestError):
    """Raised when the LLM analysis request fails."""


class AnalysisConnectionError(AnalysisError):
    """Raised when the LLM endpoint is unreachable or times out."""

    default_suggestions = [
        "Check that the LLM server is running",
        "Verify the --base-url setting",
    ]


class MalformedResponseError(AnalysisError):
    """Raised when the LLM endpoint answers with an unexpected shape."""


class ModelRefusedError(AnalysisError):
    """Raised when the LLM endpoint returns an error payload."""

    default_suggestions = [
        "Check that a vision-capable model is loaded",
        "Verify the --model setting",
    ]


def format_error_for_user(exc: Exception) -> str:
    """
    Format an exception into a single user-facing line.
    """
    if isinstance(exc, CaptestError):
        result = exc.user_message
        if exc.suggestions:
            result += f" Try: {exc.suggestions[0]}"
        return result
    return f"An unexpected error occurred: {exc}"
