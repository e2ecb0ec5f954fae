"""
Capture-to-artifact pipeline: line grouping, OCR and the run driver.
"""

from .grouping import group_lines
from .main import CapturePipeline, Mode, ModeResult, PipelineReport
from .ocr import OcrOrchestrator, PaddleTextEngine, TextEngine

__all__ = [
    "CapturePipeline",
    "Mode",
    "ModeResult",
    "PipelineReport",
    "OcrOrchestrator",
    "PaddleTextEngine",
    "TextEngine",
    "group_lines",
]
