"""
Data model for a single capture-to-artifact run.

All entities are immutable and created fresh per capture.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from PIL import Image


Point = Tuple[float, float]


@dataclass(frozen=True)
class RawFrame:
    """Raw BGRA pixel buffer as delivered by a capture provider."""

    width: int
    height: int
    stride: int
    pixels: bytes


@dataclass(frozen=True)
class RgbImage:
    """Packed RGB image, 3 bytes per pixel, stride = width * 3."""

    width: int
    height: int
    pixels: bytes

    def __post_init__(self):
        expected = self.width * self.height * 3
        if len(self.pixels) != expected:
            raise ValueError(
                f"RGB buffer has {len(self.pixels)} bytes, expected {expected}"
            )

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def to_array(self) -> np.ndarray:
        """Read-only (height, width, 3) view of the pixels."""
        return np.frombuffer(self.pixels, dtype=np.uint8).reshape(
            self.height, self.width, 3
        )

    def to_pil(self) -> Image.Image:
        return Image.frombytes("RGB", (self.width, self.height), self.pixels)


@dataclass(frozen=True)
class EncodedImage:
    """Encoded image bytes, the terminal artifact of the save branch."""

    data: bytes
    format: str = "jpeg"

    @property
    def mime_type(self) -> str:
        return f"image/{self.format}"

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class TextRegion:
    """A detected candidate text area."""

    polygon: Tuple[Point, ...]
    confidence: float = 1.0

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y) of the polygon."""
        xs = [p[0] for p in self.polygon]
        ys = [p[1] for p in self.polygon]
        return min(xs), min(ys), max(xs), max(ys)

    @property
    def left(self) -> float:
        return self.bounds[0]

    @property
    def height(self) -> float:
        _, y0, _, y1 = self.bounds
        return y1 - y0

    @property
    def center_y(self) -> float:
        _, y0, _, y1 = self.bounds
        return (y0 + y1) / 2.0

    @classmethod
    def from_box(
        cls,
        x0: float,
        y0: float,
        x1: float,
        y1: float,
        confidence: float = 1.0,
    ) -> "TextRegion":
        """Build an axis-aligned region from its corners."""
        polygon = ((x0, y0), (x1, y0), (x1, y1), (x0, y1))
        return cls(polygon=polygon, confidence=confidence)


@dataclass(frozen=True)
class TextLine:
    """Regions sharing a baseline, ordered left to right."""

    regions: Tuple[TextRegion, ...]
    baseline_y: float

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        boxes = [r.bounds for r in self.regions]
        return (
            min(b[0] for b in boxes),
            min(b[1] for b in boxes),
            max(b[2] for b in boxes),
            max(b[3] for b in boxes),
        )


class OcrStatus(str, Enum):
    TEXT_FOUND = "text_found"
    NO_TEXT_FOUND = "no_text_found"


@dataclass(frozen=True)
class RecognizedLine:
    line: TextLine
    text: str


@dataclass(frozen=True)
class OcrResult:
    """Recognized lines in reading order."""

    lines: Tuple[RecognizedLine, ...] = ()

    @property
    def status(self) -> OcrStatus:
        return OcrStatus.TEXT_FOUND if self.lines else OcrStatus.NO_TEXT_FOUND

    @property
    def text(self) -> str:
        return "\n".join(entry.text for entry in self.lines)


@dataclass(frozen=True)
class AnalysisRequest:
    image_base64: str
    prompt: str
    mime_type: str = "image/jpeg"

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.image_base64}"


@dataclass(frozen=True)
class AnalysisResponse:
    answer_text: str
    model: Optional[str] = None
    usage: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DisplayInfo:
    """Geometry of a capturable screen."""

    index: int
    left: int
    top: int
    width: int
    height: int

    def describe(self) -> str:
        return f"{self.width}x{self.height} at ({self.left},{self.top})"
