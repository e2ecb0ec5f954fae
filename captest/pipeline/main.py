"""
Capture-to-artifact pipeline driver.

One run processes exactly one frame:
1. Capture a raw BGRA frame (fatal on failure)
2. Normalize it to packed RGB (fatal on failure)
3. Encode to JPEG when saving or analyzing
4. Run the OCR and analysis branches concurrently
5. Commit the save artifact and report per-mode results

A failure inside a branch is recorded against its mode and never stops the
other branches.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Union

from ..capture import CaptureProvider, MssCaptureProvider
from ..config import (
    DEFAULT_ANALYSIS_MODEL,
    DEFAULT_JPEG_QUALITY,
    DEFAULT_LINE_TOLERANCE,
    DEFAULT_PROVIDER,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_SECONDS,
)
from ..errors import CaptestError
from ..frames import AnalysisResponse, EncodedImage, OcrResult, RawFrame, RgbImage
from ..imaging import encode_jpeg, normalize_frame, validate_quality
from ..processor import AnalysisTransport, analyze_image, image_to_base64, make_transport
from ..storage import resolve_output_path, save_encoded_image
from .ocr import OcrOrchestrator, PaddleTextEngine, TextEngine


class Mode(str, Enum):
    SAVE = "save"
    OCR = "ocr"
    ANALYZE = "analyze"


@dataclass
class ModeResult:
    """Outcome of one requested mode: an artifact or a failure reason."""

    mode: Mode
    ok: bool
    value: Any = None
    error: Optional[CaptestError] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if isinstance(value, Path):
            value = str(value)
        elif isinstance(value, OcrResult):
            value = {"status": value.status.value, "text": value.text}
        elif isinstance(value, AnalysisResponse):
            value = {"answer": value.answer_text, "model": value.model}

        return {
            "mode": self.mode.value,
            "ok": self.ok,
            "value": value,
            "error": self.error.to_dict() if self.error else None,
            "stats": self.stats,
        }


@dataclass
class PipelineReport:
    """Terminal report of a run, one entry per requested mode."""

    width: int
    height: int
    results: Dict[Mode, ModeResult]
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "resolution": f"{self.width}x{self.height}",
            "results": {
                mode.value: result.to_dict() for mode, result in self.results.items()
            },
            "stats": self.stats,
        }


def parse_modes(modes: Iterable[Union[Mode, str]]) -> frozenset:
    """Normalize a collection of mode names into a non-empty set of Mode."""
    parsed = frozenset(Mode(m) for m in modes)
    if not parsed:
        raise ValueError("At least one mode must be requested")
    return parsed


def run_in_daemon_thread(func: Callable[..., Any], *args: Any) -> asyncio.Future:
    """
    Run a blocking call on a daemon thread and expose it as an asyncio future.

    Cancelling the future abandons the call. The thread runs until the call
    returns, but it never holds up interpreter exit.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def _resolve(result, error):
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _target():
        result, error = None, None
        try:
            result = func(*args)
        except Exception as e:
            error = e
        try:
            loop.call_soon_threadsafe(_resolve, result, error)
        except RuntimeError:
            # Loop already closed: the run was cancelled and nobody is waiting
            return

    threading.Thread(
        target=_target, name=f"captest-{func.__name__}", daemon=True
    ).start()
    return future


class CapturePipeline:
    """Sequences capture, normalization, encoding, OCR and analysis."""

    def __init__(
        self,
        capture_provider: Optional[CaptureProvider] = None,
        text_engine: Optional[TextEngine] = None,
        transport: Optional[AnalysisTransport] = None,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        line_tolerance: float = DEFAULT_LINE_TOLERANCE,
        prompt: Optional[str] = None,
        provider: str = DEFAULT_PROVIDER,
        base_url: Optional[str] = None,
        model: str = DEFAULT_ANALYSIS_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        verbose: bool = False,
    ):
        """
        Initialize the pipeline.

        Args:
            capture_provider: Source of raw frames (default: mss)
            text_engine: Detection/recognition engine (default: PaddleOCR)
            transport: LLM transport (default: built from provider/base_url/timeout)
            jpeg_quality: JPEG quality 0-100
            line_tolerance: Line grouping band as a fraction of median region height
            prompt: Analysis prompt; None uses the default prompt
            provider: "openai" or "ollama", used when no transport is given
            base_url: LLM server base URL, used when no transport is given
            model: Model name sent with the analysis request
            temperature: Sampling temperature for the analysis request
            timeout: Analysis request timeout in seconds
            verbose: Print stage progress
        """
        self.jpeg_quality = validate_quality(jpeg_quality)
        self.capture_provider = capture_provider or MssCaptureProvider()
        self.ocr = OcrOrchestrator(text_engine or PaddleTextEngine(), line_tolerance)
        self.transport = transport or make_transport(provider, base_url, timeout)
        self.prompt = prompt
        self.model = model
        self.temperature = temperature
        self.verbose = verbose

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    def capture(self, screen: int = 0, window_id: Optional[int] = None) -> RawFrame:
        """Grab one frame from a window when `window_id` is set, else from a screen."""
        if window_id is not None:
            self._log(f"📸 Capturing window {window_id}...")
            return self.capture_provider.capture_window(window_id)
        self._log(f"📸 Capturing screen {screen}...")
        return self.capture_provider.capture_display(screen)

    def run(
        self,
        modes: Iterable[Union[Mode, str]],
        screen: int = 0,
        window_id: Optional[int] = None,
        output_path: Optional[Union[str, Path]] = None,
    ) -> PipelineReport:
        """
        Capture one frame and process it.

        Raises:
            CaptureError: If no frame could be captured
            NormalizeError: If the frame is malformed
        """
        requested = parse_modes(modes)

        start_time = time.time()
        frame = self.capture(screen=screen, window_id=window_id)
        capture_time = time.time() - start_time
        self._log(f"✅ Captured {frame.width}x{frame.height} frame in {capture_time:.3f}s")

        report = self.process_frame(frame, requested, output_path=output_path)
        report.stats["capture_time_seconds"] = round(capture_time, 3)
        report.stats["total_processing_time_seconds"] = round(
            time.time() - start_time, 3
        )
        return report

    def process_frame(
        self,
        frame: RawFrame,
        modes: Iterable[Union[Mode, str]],
        output_path: Optional[Union[str, Path]] = None,
    ) -> PipelineReport:
        """Synchronous wrapper around process_frame_async."""
        return asyncio.run(
            self.process_frame_async(frame, modes, output_path=output_path)
        )

    async def process_frame_async(
        self,
        frame: RawFrame,
        modes: Iterable[Union[Mode, str]],
        output_path: Optional[Union[str, Path]] = None,
    ) -> PipelineReport:
        """
        Process an already captured frame.

        The save artifact is written only after the concurrent branches have
        joined, so a cancelled run leaves no output file behind.
        """
        requested = parse_modes(modes)
        start_time = time.time()
        stats: Dict[str, Any] = {}

        image = normalize_frame(frame)
        stats["normalize_time_seconds"] = round(time.time() - start_time, 3)
        self._log(f"✅ Normalized to {image.width}x{image.height} RGB")

        encoded: Optional[EncodedImage] = None
        encode_error: Optional[CaptestError] = None
        if Mode.SAVE in requested or Mode.ANALYZE in requested:
            encode_start = time.time()
            try:
                encoded = encode_jpeg(image, self.jpeg_quality)
            except CaptestError as e:
                encode_error = e
                print(f"❌ Encoding failed: {e}")
            else:
                stats["encode_time_seconds"] = round(time.time() - encode_start, 3)
                stats["image_size_kb"] = round(len(encoded) / 1024, 2)
                self._log(f"✅ Encoded JPEG ({stats['image_size_kb']} KB)")

        results: Dict[Mode, ModeResult] = {}
        branches = {}
        if Mode.OCR in requested:
            branches[Mode.OCR] = run_in_daemon_thread(self._run_ocr, image)
        if Mode.ANALYZE in requested:
            if encoded is None:
                results[Mode.ANALYZE] = ModeResult(
                    Mode.ANALYZE, ok=False, error=encode_error
                )
            else:
                branches[Mode.ANALYZE] = run_in_daemon_thread(
                    self._run_analysis, encoded
                )

        outcomes = await asyncio.gather(*branches.values())
        results.update(zip(branches.keys(), outcomes))

        if Mode.SAVE in requested:
            if encoded is None:
                results[Mode.SAVE] = ModeResult(Mode.SAVE, ok=False, error=encode_error)
            else:
                results[Mode.SAVE] = self._run_save(encoded, output_path)

        ordered = {mode: results[mode] for mode in Mode if mode in results}
        return PipelineReport(
            width=image.width, height=image.height, results=ordered, stats=stats
        )

    def _run_ocr(self, image: RgbImage) -> ModeResult:
        start_time = time.time()
        self._log("📝 Extracting text with OCR...")
        try:
            result = self.ocr.run(image)
        except CaptestError as e:
            print(f"❌ OCR failed: {e}")
            return ModeResult(Mode.OCR, ok=False, error=e)

        text = result.text
        stats = {
            "ocr_processing_time_seconds": round(time.time() - start_time, 3),
            "status": result.status.value,
            "text_lines_found": len(result.lines),
            "text_length_chars": len(text),
        }
        if result.lines:
            self._log(f"✅ Extracted {len(text)} chars from {len(result.lines)} lines")
        else:
            self._log("⚠️  No text detected in image")
        return ModeResult(Mode.OCR, ok=True, value=result, stats=stats)

    def _run_analysis(self, image: EncodedImage) -> ModeResult:
        start_time = time.time()
        self._log(f"🤖 Analyzing with {self.model}...")
        try:
            response = analyze_image(
                image,
                self.transport,
                prompt=self.prompt,
                model=self.model,
                temperature=self.temperature,
            )
        except CaptestError as e:
            print(f"❌ Analysis failed: {e}")
            return ModeResult(Mode.ANALYZE, ok=False, error=e)

        answer = response.answer_text
        stats = {
            "analysis_processing_time_seconds": round(time.time() - start_time, 3),
            "image_base64_size_kb": round(len(image_to_base64(image)) / 1024, 2),
            "response_length_chars": len(answer),
            "response_word_count": len(answer.split()),
        }
        if "prompt_tokens" in response.usage:
            stats["prompt_token_count"] = response.usage["prompt_tokens"]
        if "completion_tokens" in response.usage:
            stats["response_token_count"] = response.usage["completion_tokens"]

        self._log(f"✅ Analysis completed in {stats['analysis_processing_time_seconds']}s")
        return ModeResult(Mode.ANALYZE, ok=True, value=response, stats=stats)

    def _run_save(
        self, image: EncodedImage, output_path: Optional[Union[str, Path]]
    ) -> ModeResult:
        start_time = time.time()
        target = resolve_output_path(output_path)
        try:
            saved = save_encoded_image(image, target)
        except CaptestError as e:
            print(f"❌ Save failed: {e}")
            return ModeResult(Mode.SAVE, ok=False, error=e)

        self._log(f"💾 Screenshot saved: {saved}")
        return ModeResult(
            Mode.SAVE,
            ok=True,
            value=saved,
            stats={
                "save_time_seconds": round(time.time() - start_time, 3),
                "image_size_bytes": len(image),
            },
        )
