"""Tests for preprocessor module."""

import pytest
from PIL import Image, ImageDraw

from pagepipeline import preprocessor
from pagepipeline.preprocessor import (
    binarize_otsu,
    build_variants,
    crop_margins,
    discover_images,
    load_image,
    otsu_threshold,
    upsample,
)


class TestUpsample:
    """Tests for upsampling narrow scans."""

    def test_scale_clamped_to_two(self):
        """Very narrow images should at most double."""
        img = Image.new("L", (400, 300), 255)
        assert upsample(img).size == (800, 600)

    def test_scale_to_min_width(self):
        """Moderately narrow images should reach the target width."""
        img = Image.new("L", (1000, 500), 255)
        assert upsample(img).size == (1600, 800)

    def test_scale_at_least_minimum(self):
        """Nearly wide enough images still get the minimum scale."""
        img = Image.new("L", (1500, 1000), 255)
        assert upsample(img).size == (1875, 1250)

    def test_never_downscale(self):
        """Wide images should be returned unchanged."""
        img = Image.new("L", (2000, 1000), 255)
        assert upsample(img) is img


class TestOtsu:
    """Tests for global thresholding."""

    def test_threshold_between_modes(self):
        """A two-tone image should split between the tones."""
        img = Image.new("L", (100, 100), 200)
        ImageDraw.Draw(img).rectangle([0, 0, 49, 99], fill=50)
        threshold = otsu_threshold(img)
        assert 50 <= threshold < 200

    def test_binarize_two_levels(self):
        """Binarized output should only contain black and white."""
        img = Image.new("L", (100, 100), 200)
        ImageDraw.Draw(img).rectangle([0, 0, 49, 99], fill=50)
        colors = {value for _, value in binarize_otsu(img).getcolors()}
        assert colors == {0, 255}


class TestCropMargins:
    """Tests for margin cropping."""

    def test_crop_to_content(self):
        """Crop should keep the dark region plus padding."""
        img = Image.new("L", (200, 200), 255)
        ImageDraw.Draw(img).rectangle([80, 80, 120, 120], fill=0)
        assert crop_margins(img).size == (81, 81)

    def test_padding_clamped_to_image(self):
        """Padding should not extend past the image edges."""
        img = Image.new("L", (200, 200), 255)
        ImageDraw.Draw(img).rectangle([0, 0, 10, 10], fill=0)
        assert crop_margins(img).size == (31, 31)

    def test_blank_page_unchanged(self):
        """A page without ink should not be cropped."""
        img = Image.new("L", (200, 200), 255)
        assert crop_margins(img).size == (200, 200)


class TestBuildVariants:
    """Tests for OCR variant construction."""

    def test_no_preprocessing(self, page_image):
        """Without preprocessing only the original is used."""
        variants = build_variants(page_image, is_arabic=False, preprocess=False)
        assert [v.name for v in variants] == ["original"]
        assert variants[0].image is page_image

    def test_arabic_variants(self, page_image):
        """Arabic pages should get adaptive and Otsu variants."""
        variants = build_variants(page_image, is_arabic=True, preprocess=True)
        assert [v.name for v in variants] == ["adaptive", "otsu"]
        for variant in variants:
            assert variant.image.mode == "L"

    def test_default_variant(self, page_image):
        """Other languages should get a single binarized variant."""
        variants = build_variants(page_image, is_arabic=False, preprocess=True)
        assert [v.name for v in variants] == ["default"]

    def test_failure_falls_back_to_original(self, page_image, monkeypatch):
        """A preprocessing error should fall back to the original image."""
        def broken(img):
            raise OSError("decoder error")

        monkeypatch.setattr(preprocessor, "prepare_grayscale", broken)
        variants = build_variants(page_image, is_arabic=True, preprocess=True)
        assert [v.name for v in variants] == ["original"]


class TestDiscoverImages:
    """Tests for page image discovery."""

    def test_numeric_order(self, tmp_path):
        """Pages should sort by their number, not lexically."""
        for name in ("page_10.png", "page_2.png", "page_1.jpg", "notes.txt"):
            (tmp_path / name).write_bytes(b"")
        (tmp_path / "sub.png").mkdir()

        found = discover_images(tmp_path, (".png", ".jpg"))
        assert [p.name for p in found] == ["page_1.jpg", "page_2.png", "page_10.png"]

    def test_uppercase_extension(self, tmp_path):
        """Extension matching should ignore case."""
        (tmp_path / "SCAN_3.PNG").write_bytes(b"")
        assert [p.name for p in discover_images(tmp_path, (".png",))] == ["SCAN_3.PNG"]

    def test_unnumbered_first(self, tmp_path):
        """Files without a number should come before numbered pages."""
        for name in ("page_1.png", "cover.png"):
            (tmp_path / name).write_bytes(b"")
        assert [p.name for p in discover_images(tmp_path, (".png",))] == ["cover.png", "page_1.png"]


def test_load_image(tmp_path, page_image):
    """Saved images should load with their size intact."""
    path = tmp_path / "page.png"
    page_image.save(path)
    loaded = load_image(path)
    assert loaded.size == (400, 300)


def test_load_missing_image(tmp_path):
    with pytest.raises(OSError):
        load_image(tmp_path / "missing.png")
