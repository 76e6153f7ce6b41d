"""
OCR ensemble: run several preprocessing/segmentation strategies and keep the best.

The recognition engine is pluggable. TesseractEngine wraps pytesseract;
tests substitute a fake with the same two methods.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import pytesseract
from PIL import Image

from .config import OcrOptions
from .errors import InputError
from .models import RecognitionPayload
from .preprocessor import build_variants, load_image
from .text_cleaner import clean_recognized_text

logger = logging.getLogger(__name__)

# Page segmentation modes tried after the cached winner and the preferred mode
ARABIC_FALLBACK_MODES = [4, 3, 6, 7, 11, 12, 13]
DEFAULT_FALLBACK_MODES = [11, 12, 13]


class RecognitionEngine(Protocol):
    """Anything that can read text off an image."""

    def recognize(self, image: Image.Image, segmentation_mode: int, language: str) -> RecognitionPayload:
        ...

    def detect_rotation(self, image: Image.Image) -> float:
        """Degrees clockwise the image must be turned to read upright."""
        ...


class TesseractEngine:
    """Recognition through the tesseract binary via pytesseract."""

    def __init__(self, extra_config: str = "") -> None:
        self.extra_config = extra_config

    def recognize(self, image: Image.Image, segmentation_mode: int, language: str) -> RecognitionPayload:
        data = pytesseract.image_to_data(
            image,
            lang=language,
            config=f"--psm {segmentation_mode} {self.extra_config}".strip(),
            output_type=pytesseract.Output.DICT,
        )

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences = []
        for i, word in enumerate(data["text"]):
            word = (word or "").strip()
            if not word:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(word)

            conf = float(data["conf"][i])
            if conf >= 0:
                confidences.append(conf)

        text = "\n".join(" ".join(words) for words in lines.values())
        mean_conf = sum(confidences) / len(confidences) if confidences else 0.0
        return RecognitionPayload(text=text, confidence=mean_conf / 100.0)

    def detect_rotation(self, image: Image.Image) -> float:
        osd = pytesseract.image_to_osd(image, output_type=pytesseract.Output.DICT)
        return float(osd.get("rotate", 0))


@dataclass
class OcrCandidate:
    """Output of one strategy (variant + segmentation mode)."""

    text: str
    confidence: float
    strategy_id: str


@dataclass
class OcrResult:
    """Best candidate after cleaning, plus everything that was tried."""

    text: str
    confidence: float
    strategy_id: str | None = None
    candidates: list[OcrCandidate] = field(default_factory=list)
    rotation: int = 0

    @property
    def success(self) -> bool:
        return bool(self.text.strip())


def image_key(image: Image.Image) -> str:
    """Content hash identifying an image across calls."""
    digest = hashlib.sha1(image.tobytes())
    digest.update(f"{image.mode}:{image.size}".encode())
    return digest.hexdigest()


def snap_rotation(angle: float) -> int:
    """Round an angle to the nearest multiple of 90 in [0, 360)."""
    return int(round(angle / 90.0)) * 90 % 360


def select_best(candidates: list[OcrCandidate]) -> OcrCandidate | None:
    """True maximum by (confidence, stripped text length); first wins ties."""
    if not candidates:
        return None
    return max(candidates, key=lambda c: (c.confidence, len(c.text.strip())))


class OcrEnsembleExtractor:
    """Runs every strategy on a page and returns the best reading.

    The winning segmentation mode is remembered per image so a re-run of
    the same page tries it first.
    """

    def __init__(self, engine: RecognitionEngine, options: OcrOptions | None = None) -> None:
        self.engine = engine
        self.options = options or OcrOptions()
        self._mode_cache: dict[str, int] = {}

    def segmentation_modes(self, key: str, options: OcrOptions) -> list[int]:
        """Modes to try, in order, without duplicates."""
        fallback = ARABIC_FALLBACK_MODES if options.is_arabic else DEFAULT_FALLBACK_MODES
        ordered = []
        cached = self._mode_cache.get(key)
        if cached is not None:
            ordered.append(cached)
        ordered.append(options.preferred_segmentation_mode)
        ordered.extend(fallback)
        return list(dict.fromkeys(ordered))

    def cached_mode(self, image: Image.Image) -> int | None:
        return self._mode_cache.get(image_key(image))

    def _auto_rotate(self, image: Image.Image) -> tuple[Image.Image, int]:
        try:
            angle = snap_rotation(self.engine.detect_rotation(image))
        except Exception as e:
            logger.debug(f"Orientation detection failed, keeping image as is: {e}")
            return image, 0

        if angle == 0:
            return image, 0

        logger.info(f"Rotating page {angle} degrees clockwise")
        return image.rotate(-angle, expand=True), angle

    def extract(self, image: Image.Image | None, options: OcrOptions | None = None) -> OcrResult:
        """Recognize a page with every strategy and keep the best candidate.

        Args:
            image: Page image
            options: Overrides the extractor's default options

        Returns:
            OcrResult; empty text with confidence 0 if every strategy failed

        Raises:
            InputError: If no image (or an empty one) is given
        """
        if image is None:
            raise InputError("No image provided for OCR")
        if image.width == 0 or image.height == 0:
            raise InputError(f"Image has no pixels: {image.size}")

        opts = options or self.options
        key = image_key(image)

        rotation = 0
        if opts.should_rotate:
            image, rotation = self._auto_rotate(image)

        variants = build_variants(image, is_arabic=opts.is_arabic, preprocess=opts.should_preprocess)
        modes = self.segmentation_modes(key, opts)

        candidates: list[OcrCandidate] = []
        for variant in variants:
            for mode in modes:
                strategy_id = f"{variant.name}/psm{mode}"
                try:
                    payload = self.engine.recognize(variant.image, mode, opts.language)
                except Exception as e:
                    logger.debug(f"OCR strategy {strategy_id} failed: {e}")
                    continue
                candidates.append(OcrCandidate(payload.text, payload.confidence, strategy_id))

        best = select_best(candidates)
        if best is None:
            logger.warning(f"All {len(variants) * len(modes)} OCR strategies failed")
            return OcrResult(text="", confidence=0.0, rotation=rotation)

        self._mode_cache[key] = int(best.strategy_id.rsplit("psm", 1)[1])
        logger.debug(
            f"OCR winner {best.strategy_id} (confidence {best.confidence:.2f}) "
            f"out of {len(candidates)} candidates"
        )

        return OcrResult(
            text=clean_recognized_text(best.text),
            confidence=best.confidence,
            strategy_id=best.strategy_id,
            candidates=candidates,
            rotation=rotation,
        )

    def extract_file(self, image_path: Path, options: OcrOptions | None = None) -> OcrResult:
        """Load an image from disk and extract it."""
        if not image_path.exists():
            raise InputError(f"Image not found: {image_path}")
        return self.extract(load_image(image_path), options)
