"""
Tests for the per-image forensic signal extractor.

Verifies:
1. Content hashing and in-batch duplicate detection
2. EXIF signals: AI software tag, missing camera, stripped metadata
3. 64-pixel alignment flag
4. Low-noise ("too perfect") detection
5. Graceful degradation on undecodable input

Running:
    python -m pytest tests/test_image_forensics.py -v
"""

import io

import pytest

PIL = pytest.importorskip("PIL")
from PIL import Image
import numpy as np

from loyaltyguard.pipelines.image_forensics import (
    ALIGNMENT_FLAG,
    LOW_NOISE_REASON,
    NO_CAMERA_FLAG,
    NO_EXIF_FLAG,
    analyze_image,
    content_hash,
    summarize_images,
)


# =============================================================================
# Helpers: Create synthetic test images
# =============================================================================

def _noisy_photo(width=601, height=803, seed=0, exif=None) -> bytes:
    """Receipt-like photo with camera noise. Returns PNG/JPEG bytes."""
    rng = np.random.default_rng(seed)
    arr = np.full((height, width, 3), 235, dtype=np.float32)
    arr += rng.normal(0, 25, arr.shape)
    img = Image.fromarray(np.clip(arr, 0, 255).astype(np.uint8))
    buf = io.BytesIO()
    if exif is not None:
        img.save(buf, format="JPEG", quality=90, exif=exif)
    else:
        img.save(buf, format="PNG")
    return buf.getvalue()


def _flat_image(width=512, height=768) -> bytes:
    """Perfectly flat white image (synthetic-looking)."""
    img = Image.new("RGB", (width, height), color=(255, 255, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _exif(software=None, make=None, model=None):
    exif = Image.Exif()
    if software:
        exif[0x0131] = software
    if make:
        exif[0x010F] = make
    if model:
        exif[0x0110] = model
    return exif


# =============================================================================
# Tests
# =============================================================================

class TestContentHash:

    def test_hash_is_sha256_hex(self):
        digest = content_hash(b"receipt")
        assert len(digest) == 64
        assert digest == content_hash(b"receipt")
        assert digest != content_hash(b"receipt2")

    def test_identical_bytes_flag_duplicate_in_batch(self):
        data = _noisy_photo()
        summary = summarize_images([analyze_image(data, 0), analyze_image(data, 1)])
        assert summary.duplicate_images is True
        assert summary.image_count == 2

    def test_distinct_images_not_duplicates(self):
        summary = summarize_images([
            analyze_image(_noisy_photo(seed=1), 0),
            analyze_image(_noisy_photo(seed=2), 1),
        ])
        assert summary.duplicate_images is False

    def test_duplicate_in_system_is_passed_through(self):
        summary = summarize_images([analyze_image(_noisy_photo(), 0)], duplicate_in_system=True)
        assert summary.duplicate_in_system is True


class TestMetadata:

    def test_missing_exif_is_soft_flag(self):
        analysis = analyze_image(_noisy_photo(), 0)
        meta = analysis.meta_signals
        assert meta.exif_present is False
        assert meta.stripped_exif is True
        assert meta.ai_software_tag is False
        assert NO_EXIF_FLAG in meta.red_flags

    def test_ai_software_tag_detected(self):
        data = _noisy_photo(exif=_exif(software="Stable Diffusion XL", make="Canon", model="EOS"))
        meta = analyze_image(data, 0).meta_signals
        assert meta.exif_present is True
        assert meta.ai_software_tag is True
        assert any("AI software detected" in f for f in meta.red_flags)

    def test_camera_photo_has_no_ai_flag(self):
        data = _noisy_photo(exif=_exif(software="iOS 17.2", make="Apple", model="iPhone 15"))
        meta = analyze_image(data, 0).meta_signals
        assert meta.ai_software_tag is False
        assert meta.camera_info == {"make": "Apple", "model": "iPhone 15"}
        assert NO_CAMERA_FLAG not in meta.red_flags

    def test_missing_camera_flagged(self):
        data = _noisy_photo(exif=_exif(software="Snapseed"))
        assert NO_CAMERA_FLAG in analyze_image(data, 0).meta_signals.red_flags

    def test_64_pixel_alignment_flag(self):
        assert ALIGNMENT_FLAG in analyze_image(_noisy_photo(width=512, height=768), 0).meta_signals.red_flags
        assert ALIGNMENT_FLAG not in analyze_image(_noisy_photo(width=601, height=803), 0).meta_signals.red_flags


class TestQuality:

    def test_flat_image_is_too_perfect(self):
        quality = analyze_image(_flat_image(), 0).quality_check
        assert quality.too_perfect is True
        assert quality.reason == LOW_NOISE_REASON

    def test_noisy_photo_is_not_too_perfect(self):
        quality = analyze_image(_noisy_photo(), 0).quality_check
        assert quality.too_perfect is False
        assert quality.variance_score > 5.0


class TestSummary:

    def test_red_flags_deduplicated(self):
        analyses = [analyze_image(_noisy_photo(seed=s), s) for s in range(3)]
        summary = summarize_images(analyses)
        assert summary.red_flags.count(NO_EXIF_FLAG) == 1

    def test_any_flags(self):
        ai = _noisy_photo(exif=_exif(software="Midjourney v6"))
        summary = summarize_images([analyze_image(_noisy_photo(), 0), analyze_image(ai, 1), analyze_image(_flat_image(), 2)])
        assert summary.any_ai_detected is True
        assert summary.any_too_perfect is True

    def test_primary_is_first_image(self):
        analyses = [analyze_image(_noisy_photo(seed=s), s) for s in range(2)]
        assert analyses[0].is_primary is True
        assert analyses[1].is_primary is False


class TestGracefulDegradation:

    def test_garbage_bytes_give_default_signals(self):
        analysis = analyze_image(b"not an image at all", 0)
        assert analysis.meta_signals.ai_software_tag is False
        assert analysis.quality_check.too_perfect is False
        assert analysis.content_hash == content_hash(b"not an image at all")

    def test_empty_bytes(self):
        analysis = analyze_image(b"", 0)
        assert analysis.quality_check.variance_score is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
