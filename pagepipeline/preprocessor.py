"""
Image preprocessing: page discovery and binarized OCR variants.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageChops, ImageFilter, ImageOps

logger = logging.getLogger(__name__)

# Pages narrower than this are upsampled before binarization
MIN_OCR_WIDTH = 1600
MIN_SCALE = 1.25
MAX_SCALE = 2.0

ADAPTIVE_RADIUS = 15  # box radius of the local mean window
ADAPTIVE_OFFSET = 10  # pixels this much darker than the local mean are ink
CROP_PADDING = 20

PAGE_NUMBER_PATTERN = re.compile(r'(\d+)(?!.*\d)')


@dataclass
class ImageVariant:
    """One image prepared for recognition."""

    name: str
    image: Image.Image


def discover_images(input_dir: Path, supported_extensions: tuple[str, ...]) -> list[Path]:
    """Find page images in a directory, ordered by the last number in the filename.

    Args:
        input_dir: Directory to search
        supported_extensions: Lowercase extensions to accept

    Returns:
        List of image paths in page order
    """
    images = {
        path for path in input_dir.iterdir()
        if path.is_file() and path.suffix.lower() in supported_extensions
    }

    def page_key(path: Path) -> tuple[int, str]:
        match = PAGE_NUMBER_PATTERN.search(path.stem)
        return (int(match.group(1)) if match else -1, path.name)

    ordered = sorted(images, key=page_key)
    logger.info(f"Found {len(ordered)} images in {input_dir}")
    return ordered


def load_image(path: Path) -> Image.Image:
    """Open an image and rotate its pixels to match the EXIF orientation."""
    with Image.open(path) as img:
        img.load()
        return ImageOps.exif_transpose(img)


def upsample(img: Image.Image, min_width: int = MIN_OCR_WIDTH) -> Image.Image:
    """Enlarge narrow scans so glyph strokes survive thresholding.

    Only resizes up, never down. Scale is clamped to [1.25, 2].
    """
    width, height = img.size
    if width >= min_width:
        return img

    scale = max(MIN_SCALE, min(MAX_SCALE, min_width / width))
    return img.resize((int(width * scale), int(height * scale)), Image.LANCZOS)


def otsu_threshold(gray: Image.Image) -> int:
    """Global threshold maximizing between-class variance of the histogram."""
    histogram = gray.histogram()[:256]
    total = sum(histogram)
    if total == 0:
        return 128

    sum_all = sum(i * count for i, count in enumerate(histogram))
    sum_background = 0.0
    weight_background = 0
    best_threshold = 128
    best_variance = -1.0

    for t, count in enumerate(histogram):
        weight_background += count
        if weight_background == 0:
            continue
        weight_foreground = total - weight_background
        if weight_foreground == 0:
            break

        sum_background += t * count
        mean_background = sum_background / weight_background
        mean_foreground = (sum_all - sum_background) / weight_foreground
        variance = weight_background * weight_foreground * (mean_background - mean_foreground) ** 2

        if variance > best_variance:
            best_variance = variance
            best_threshold = t

    return best_threshold


def binarize_otsu(gray: Image.Image) -> Image.Image:
    threshold = otsu_threshold(gray)
    return gray.point(lambda p: 255 if p > threshold else 0)


def binarize_adaptive(gray: Image.Image, radius: int = ADAPTIVE_RADIUS, offset: int = ADAPTIVE_OFFSET) -> Image.Image:
    """Threshold each pixel against its local mean.

    Handles uneven lighting across a photographed page, where a single
    global threshold blacks out the shadowed side.
    """
    local_mean = gray.filter(ImageFilter.BoxBlur(radius))
    # How much darker each pixel is than its neighbourhood, clamped at 0
    darkness = ImageChops.subtract(local_mean, gray)
    return darkness.point(lambda d: 0 if d > offset else 255)


def crop_margins(binary: Image.Image, padding: int = CROP_PADDING) -> Image.Image:
    """Crop to the bounding box of dark pixels plus padding."""
    bbox = ImageOps.invert(binary).getbbox()
    if bbox is None:
        return binary

    left, top, right, bottom = bbox
    width, height = binary.size
    return binary.crop((
        max(0, left - padding),
        max(0, top - padding),
        min(width, right + padding),
        min(height, bottom + padding),
    ))


def prepare_grayscale(img: Image.Image) -> Image.Image:
    """Grayscale, upsample, denoise and stretch contrast."""
    gray = ImageOps.grayscale(img)
    gray = upsample(gray)
    gray = gray.filter(ImageFilter.MedianFilter(3))
    return ImageOps.autocontrast(gray, cutoff=1)


def build_variants(img: Image.Image, is_arabic: bool, preprocess: bool) -> list[ImageVariant]:
    """Produce the images the OCR ensemble will try.

    Arabic pages get an adaptive and an Otsu variant; other languages get one
    Otsu variant when preprocessing is requested. The original image is used
    when preprocessing is off or fails.

    Args:
        img: Source page image
        is_arabic: Recognition language includes Arabic
        preprocess: Build binarized variants at all

    Returns:
        Non-empty list of variants
    """
    original = [ImageVariant("original", img)]
    if not preprocess:
        return original

    try:
        gray = prepare_grayscale(img)
        if is_arabic:
            return [
                ImageVariant("adaptive", crop_margins(binarize_adaptive(gray))),
                ImageVariant("otsu", crop_margins(binarize_otsu(gray))),
            ]
        return [ImageVariant("default", crop_margins(binarize_otsu(gray)))]
    except (OSError, ValueError) as e:
        logger.warning(f"Preprocessing failed, using original image: {e}")
        return original
