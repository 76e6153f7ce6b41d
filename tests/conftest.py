"""Shared fakes for external services."""

import pytest
from PIL import Image, ImageDraw

from pagepipeline.errors import InputError
from pagepipeline.models import RecognitionPayload

SOURCE_TEXT = """Photosynthesis is the process plants use to turn light energy into chemical energy.
Chlorophyll in the chloroplasts absorbs sunlight. Water is split and oxygen is released.
Carbon dioxide from the air is fixed into glucose during the Calvin cycle.
Glucose stores the energy and feeds plant growth. Photosynthesis therefore supports almost
every food chain, and the oxygen it releases keeps the atmosphere breathable.
Leaves are adapted for photosynthesis: they are thin, broad and full of chloroplasts."""

GOOD_SUMMARY = """## Photosynthesis

Photosynthesis lets plants turn light energy into chemical energy stored in glucose.

- Chlorophyll in the chloroplasts absorbs sunlight.
- Water is split and oxygen is released into the atmosphere.
- Carbon dioxide is fixed into glucose during the Calvin cycle.
- Glucose feeds plant growth and supports every food chain.
- Leaves are thin and broad, full of chloroplasts, adapted for photosynthesis.
"""


class FakeEngine:
    """Recognition engine returning canned results per segmentation mode.

    results: mode -> RecognitionPayload or exception; modes not listed return
    the default payload.
    """

    def __init__(self, results=None, default=None, rotation=0.0, rotation_error=None):
        self.results = results or {}
        self.default = default if default is not None else RecognitionPayload(text="", confidence=0.0)
        self.rotation = rotation
        self.rotation_error = rotation_error
        self.calls = []

    def recognize(self, image, segmentation_mode, language):
        self.calls.append((image.size, segmentation_mode, language))
        outcome = self.results.get(segmentation_mode, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def detect_rotation(self, image):
        if self.rotation_error is not None:
            raise self.rotation_error
        return self.rotation

    @property
    def modes(self):
        return [mode for _, mode, _ in self.calls]


class FakeLLM:
    """Summary generator replaying queued responses (strings or exceptions)."""

    def __init__(self, responses=None, default=GOOD_SUMMARY):
        self.responses = list(responses or [])
        self.default = default
        self.calls = []

    def generate_summary(self, prompt, metadata=None, timeout=None):
        self.calls.append({"prompt": prompt, "metadata": metadata, "timeout": timeout})
        outcome = self.responses.pop(0) if self.responses else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeEmbedder:
    """Embeds text as counts of a few marker words."""

    MARKERS = ("photosynthesis", "glucose", "cell", "energy")

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if not text.strip():
            raise InputError("Cannot embed empty text")
        lower = text.lower()
        return [float(lower.count(m)) + 0.01 for m in self.MARKERS]


class RecordingSleep:
    """Sleep replacement that records requested delays and returns at once."""

    def __init__(self, on_sleep=None):
        self.delays = []
        self.on_sleep = on_sleep

    def __call__(self, seconds):
        self.delays.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.delays))


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def page_image():
    """White page with a few dark text-like bars."""
    img = Image.new("RGB", (400, 300), "white")
    draw = ImageDraw.Draw(img)
    for y in range(40, 260, 30):
        draw.rectangle([40, y, 360, y + 10], fill="black")
    return img


@pytest.fixture
def good_engine():
    return FakeEngine(default=RecognitionPayload(text=SOURCE_TEXT, confidence=0.9))
