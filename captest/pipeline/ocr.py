"""
OCR orchestration on top of a pluggable text engine.

The orchestrator detects regions, groups them into lines and recognizes
each line. PaddleTextEngine is the production engine; tests plug in stubs.
"""

from collections.abc import Mapping
from typing import Any, Iterable, List, Optional, Protocol, Tuple

import numpy as np

from ..config import (
    DEFAULT_LINE_TOLERANCE,
    OCR_DET_LIMIT_SIDE_LEN,
    OCR_DETECTION_MODEL,
    OCR_RECOGNITION_BATCH_SIZE,
    OCR_RECOGNITION_MODEL,
)
from ..errors import DetectionError, OcrEngineError, RecognitionError
from ..frames import OcrResult, Point, RecognizedLine, RgbImage, TextLine, TextRegion
from .grouping import group_lines


class TextEngine(Protocol):
    """Text detection/recognition capability."""

    def detect(self, image: RgbImage) -> Iterable[TextRegion]: ...

    def recognize(self, image: RgbImage, line: TextLine) -> str: ...


class OcrOrchestrator:
    """
    Drives a TextEngine over one normalized image.

    Usage:
        ocr = OcrOrchestrator(PaddleTextEngine())
        result = ocr.run(rgb_image)
        print(result.text)
    """

    def __init__(self, engine: TextEngine, tolerance: float = DEFAULT_LINE_TOLERANCE):
        if tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        self.engine = engine
        self.tolerance = tolerance

    def detect(self, image: RgbImage) -> List[TextRegion]:
        try:
            return list(self.engine.detect(image))
        except OcrEngineError:
            raise
        except Exception as e:
            raise DetectionError(
                "Text detection failed",
                technical_details=f"{type(e).__name__}: {e}",
            ) from e

    def recognize(self, image: RgbImage, line: TextLine) -> str:
        try:
            text = self.engine.recognize(image, line)
        except OcrEngineError:
            raise
        except Exception as e:
            raise RecognitionError(
                "Text recognition failed",
                technical_details=f"{type(e).__name__}: {e}",
            ) from e
        return (text or "").strip()

    def run(self, image: RgbImage) -> OcrResult:
        """
        Extract reading-order text from an image.

        Returns:
            OcrResult; empty (status NO_TEXT_FOUND) when nothing was detected

        Raises:
            DetectionError, RecognitionError: If the engine fails
        """
        regions = self.detect(image)
        if not regions:
            return OcrResult()

        lines = group_lines(regions, self.tolerance)
        recognized = [
            RecognizedLine(line=line, text=self.recognize(image, line))
            for line in lines
        ]
        return OcrResult(lines=tuple(recognized))


def _polygon_points(raw_box) -> Optional[Tuple[Point, ...]]:
    """Coerce a detector polygon (ndarray, nested or flat list) to (x, y) pairs."""
    if raw_box is None:
        return None
    coords = np.asarray(raw_box, dtype=float)
    if coords.size == 0 or coords.size % 2:
        return None
    return tuple((float(x), float(y)) for x, y in coords.reshape(-1, 2))


def _score(value) -> float:
    """Detector score as float; unscored regions count as certain."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 1.0


def _as_mapping(result: Any) -> Mapping:
    """PaddleOCR 3.x result objects behave like mappings; older ones expose dict()."""
    if isinstance(result, Mapping):
        return result
    if hasattr(result, "dict"):
        return result.dict()
    if hasattr(result, "json"):
        payload = result.json
        return payload.get("res", payload) if isinstance(payload, Mapping) else {}
    return {}


def regions_from_detection(results: Any) -> List[TextRegion]:
    """
    Convert TextDetection.predict output into TextRegion objects.

    Works with a list of per-image results or a single result mapping
    carrying `dt_polys` and `dt_scores`.
    """
    if results is None:
        return []
    if not isinstance(results, list):
        results = [results]

    regions: List[TextRegion] = []
    for result in results:
        page = _as_mapping(result)
        polys = page.get("dt_polys")
        if polys is None:
            continue
        raw_scores = page.get("dt_scores")
        scores = list(raw_scores) if raw_scores is not None else []
        for idx, raw_box in enumerate(polys):
            points = _polygon_points(raw_box)
            if not points:
                continue
            confidence = _score(scores[idx]) if idx < len(scores) else 1.0
            regions.append(TextRegion(polygon=points, confidence=confidence))
    return regions


def texts_from_recognition(results: Any) -> List[str]:
    """Pull `rec_text` out of TextRecognition.predict output."""
    if results is None:
        return []
    if not isinstance(results, list):
        results = [results]
    texts = []
    for result in results:
        text = _as_mapping(result).get("rec_text")
        if text:
            texts.append(str(text))
    return texts


class PaddleTextEngine:
    """
    TextEngine backed by PaddleOCR's standalone detection and recognition models.

    Lazy-loads both models on first use; loading takes a few seconds.
    """

    def __init__(
        self,
        detection_model: str = OCR_DETECTION_MODEL,
        recognition_model: str = OCR_RECOGNITION_MODEL,
        limit_side_len: int = OCR_DET_LIMIT_SIDE_LEN,
        batch_size: int = OCR_RECOGNITION_BATCH_SIZE,
        lazy_load: bool = True,
    ):
        self.detection_model = detection_model
        self.recognition_model = recognition_model
        self.limit_side_len = limit_side_len
        self.batch_size = batch_size
        self._detector = None
        self._recognizer = None

        if not lazy_load:
            self._load_models()

    def _load_models(self) -> None:
        if self._detector is not None and self._recognizer is not None:
            return

        try:
            from paddleocr import TextDetection, TextRecognition

            self._detector = TextDetection(
                model_name=self.detection_model,
                limit_side_len=self.limit_side_len,
                limit_type="max",  # enforce a hard size limit on detector input
            )
            self._recognizer = TextRecognition(model_name=self.recognition_model)
        except ImportError as e:
            raise OcrEngineError(
                "paddleocr not installed",
                technical_details=str(e),
                suggestions=["Run: pip install paddleocr paddlepaddle"],
            ) from e
        except Exception as e:
            raise OcrEngineError(
                "Failed to load OCR models",
                technical_details=f"{type(e).__name__}: {e}",
            ) from e

    @property
    def is_loaded(self) -> bool:
        return self._detector is not None and self._recognizer is not None

    @staticmethod
    def _to_bgr(image: RgbImage) -> np.ndarray:
        # Paddle models expect OpenCV channel order
        return np.ascontiguousarray(image.to_array()[:, :, ::-1])

    def detect(self, image: RgbImage) -> List[TextRegion]:
        self._load_models()
        results = self._detector.predict(self._to_bgr(image), batch_size=1)
        return regions_from_detection(results)

    def _crop(self, bgr: np.ndarray, region: TextRegion) -> Optional[np.ndarray]:
        height, width = bgr.shape[:2]
        x0, y0, x1, y1 = region.bounds
        left, top = max(0, int(np.floor(x0))), max(0, int(np.floor(y0)))
        right, bottom = min(width, int(np.ceil(x1))), min(height, int(np.ceil(y1)))
        if right <= left or bottom <= top:
            return None
        return np.ascontiguousarray(bgr[top:bottom, left:right])

    def recognize(self, image: RgbImage, line: TextLine) -> str:
        self._load_models()
        bgr = self._to_bgr(image)
        crops = [crop for crop in (self._crop(bgr, r) for r in line.regions) if crop is not None]
        if not crops:
            return ""
        results = self._recognizer.predict(crops, batch_size=self.batch_size)
        return " ".join(texts_from_recognition(results))
