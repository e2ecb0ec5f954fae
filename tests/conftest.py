"""
Shared fixtures: stub engines, stub transports and frame factories.
"""

import pytest

from captest.errors import AnalysisConnectionError
from captest.frames import RawFrame, TextRegion


def make_frame(width, height, stride=None, fill=(10, 20, 30, 255)):
    """Build a BGRA frame where every pixel is `fill` and padding bytes are 0."""
    stride = stride if stride is not None else width * 4
    row = bytes(fill) * width + bytes(stride - width * 4)
    return RawFrame(width=width, height=height, stride=stride, pixels=row * height)


def box(x0, y0, x1, y1):
    return TextRegion.from_box(x0, y0, x1, y1)


class StubTextEngine:
    """TextEngine returning fixed regions and one string per region."""

    def __init__(self, regions=(), texts=None, fail_on=None):
        self.regions = list(regions)
        self.texts = texts or {}
        self.fail_on = fail_on
        self.recognize_calls = 0

    def detect(self, image):
        if self.fail_on == "detect":
            raise RuntimeError("detector exploded")
        return list(self.regions)

    def recognize(self, image, line):
        self.recognize_calls += 1
        if self.fail_on == "recognize":
            raise RuntimeError("recognizer exploded")
        return " ".join(self.texts.get(r.polygon[0], "?") for r in line.regions)


class StubTransport:
    """AnalysisTransport returning a canned payload or raising an error."""

    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.bodies = []

    def complete(self, body):
        self.bodies.append(body)
        if self.error is not None:
            raise self.error
        return self.payload


def completion(text, **extra):
    payload = {"choices": [{"message": {"role": "assistant", "content": text}}]}
    payload.update(extra)
    return payload


class StubCaptureProvider:
    def __init__(self, frame):
        self.frame = frame
        self.calls = []

    def capture_display(self, index):
        self.calls.append(("display", index))
        return self.frame

    def capture_window(self, window_id):
        self.calls.append(("window", window_id))
        return self.frame


@pytest.fixture
def small_frame():
    return make_frame(8, 6)


@pytest.fixture
def unreachable_transport():
    return StubTransport(error=AnalysisConnectionError("Could not reach LLM endpoint"))
