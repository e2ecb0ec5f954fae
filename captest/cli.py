"""
CLI interface for capturing a screen or window and turning it into artifacts.
"""

import argparse
import json
import sys

from .capture import list_displays
from .config import (
    DEFAULT_ANALYSIS_MODEL,
    DEFAULT_JPEG_QUALITY,
    DEFAULT_LINE_TOLERANCE,
    DEFAULT_PROVIDER,
    DEFAULT_TIMEOUT_SECONDS,
    PROVIDERS,
)
from .errors import CaptestError, format_error_for_user
from .pipeline.main import CapturePipeline, Mode, PipelineReport

EXIT_OK = 0
EXIT_BRANCH_FAILED = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130


def list_screens() -> int:
    """Print the available screens."""
    try:
        displays = list_displays()
    except CaptestError as e:
        print(f"❌ {format_error_for_user(e)}")
        return EXIT_FATAL

    print("Available screens:")
    print("==================")
    for display in displays:
        print(f"Screen {display.index}: {display.describe()}")
    if not displays:
        print("📭 No screens found")
    return EXIT_OK


def requested_modes(args) -> list:
    """
    Work out the mode set from the flags.

    No mode flag means save-only; an output path always implies save.
    """
    modes = []
    if args.save or args.output is not None:
        modes.append(Mode.SAVE)
    if args.ocr:
        modes.append(Mode.OCR)
    if args.analyze:
        modes.append(Mode.ANALYZE)
    return modes or [Mode.SAVE]


def print_report(report: PipelineReport) -> None:
    """Print the per-mode outcome of a run."""
    print("=" * 60)
    print(f"📊 Results for {report.width}x{report.height} capture")
    print("=" * 60)

    for mode, result in report.results.items():
        if not result.ok:
            print(f"❌ {mode.value}: {format_error_for_user(result.error)}")
            continue

        if mode is Mode.SAVE:
            print(f"💾 save: {result.value}")
        elif mode is Mode.OCR:
            if result.value.lines:
                print(f"📝 ocr ({len(result.value.lines)} lines):")
                print(result.value.text)
            else:
                print("⚠️  ocr: no text found")
        elif mode is Mode.ANALYZE:
            print("🤖 analyze:")
            print(result.value.answer_text)

    if "total_processing_time_seconds" in report.stats:
        print(f"⏱️  Total time: {report.stats['total_processing_time_seconds']}s")


def capture_command(args) -> int:
    """Run one capture through the pipeline and report it."""
    try:
        pipeline = CapturePipeline(
            jpeg_quality=args.quality,
            line_tolerance=args.line_tolerance,
            prompt=args.prompt,
            provider=args.provider,
            base_url=args.base_url,
            model=args.model,
            timeout=args.timeout,
            verbose=args.verbose,
        )
    except ValueError as e:
        print(f"❌ Error: {e}")
        return EXIT_FATAL

    try:
        report = pipeline.run(
            requested_modes(args),
            screen=args.screen,
            window_id=args.window,
            output_path=args.output,
        )
    except CaptestError as e:
        print(f"❌ {format_error_for_user(e)}")
        return EXIT_FATAL

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report)

    return EXIT_OK if report.ok else EXIT_BRANCH_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="captest",
        description="Capture a screen or window and extract text or an LLM description",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("list", help="List available screens")

    capture_parser = subparsers.add_parser("capture", help="Capture a screen by number")
    capture_parser.add_argument(
        "screen",
        type=int,
        nargs="?",
        default=0,
        help="Screen number to capture (default: 0)",
    )
    capture_parser.add_argument(
        "--window",
        type=int,
        default=None,
        help="Capture this window ID instead of a screen (macOS only)",
    )
    capture_parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Output filename (implies --save; .jpg is appended if missing)",
    )
    capture_parser.add_argument(
        "--save",
        action="store_true",
        help="Save the capture as JPEG (default: screenshot_<timestamp>.jpg)",
    )
    capture_parser.add_argument(
        "--ocr", action="store_true", help="Extract text from the capture"
    )
    capture_parser.add_argument(
        "--analyze",
        action="store_true",
        help="Describe the capture with a vision-capable LLM",
    )
    capture_parser.add_argument(
        "--prompt",
        type=str,
        default=None,
        help="Prompt sent with --analyze (default: a generic description request)",
    )
    capture_parser.add_argument(
        "--provider",
        choices=list(PROVIDERS),
        default=DEFAULT_PROVIDER,
        help=f"LLM server flavour (default: {DEFAULT_PROVIDER})",
    )
    capture_parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="LLM server base URL (default: http://localhost:1234 for openai, "
        "http://localhost:11434 for ollama)",
    )
    capture_parser.add_argument(
        "--model",
        type=str,
        default=DEFAULT_ANALYSIS_MODEL,
        help=f"Model name for --analyze (default: {DEFAULT_ANALYSIS_MODEL})",
    )
    capture_parser.add_argument(
        "--quality",
        type=int,
        default=DEFAULT_JPEG_QUALITY,
        help=f"JPEG quality 0-100 (default: {DEFAULT_JPEG_QUALITY})",
    )
    capture_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"LLM request timeout in seconds (default: {DEFAULT_TIMEOUT_SECONDS:g})",
    )
    capture_parser.add_argument(
        "--line-tolerance",
        type=float,
        default=DEFAULT_LINE_TOLERANCE,
        help="OCR line grouping band as a fraction of text height "
        f"(default: {DEFAULT_LINE_TOLERANCE})",
    )
    capture_parser.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )
    capture_parser.add_argument(
        "--verbose", action="store_true", help="Show stage progress"
    )

    return parser


def main(argv=None) -> int:
    """Parse arguments and dispatch; returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_FATAL

    try:
        if args.command == "list":
            return list_screens()
        return capture_command(args)
    except KeyboardInterrupt:
        print("\n🛑 Interrupted, nothing written")
        return EXIT_INTERRUPTED


def run():
    """Main application entry point"""
    sys.exit(main())
