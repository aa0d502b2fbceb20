# loyaltyguard/pipelines/ocr.py
"""
OCR adapter for LoyaltyGuard.

OCR is an external capability: the pipeline only needs text per image.
TesseractOCR is the default engine; anything with an
`extract_text(bytes) -> str` method can be injected instead (a cloud
vision client, a fake in tests).

Failures return empty text so the pipeline continues on the remaining
signals (metadata, noise, duplicates).
"""

import io
import logging
import os
from typing import Iterable, Optional

import pytesseract
from PIL import Image
from pytesseract import TesseractNotFoundError

logger = logging.getLogger(__name__)

# Tesseract language packs, e.g. "eng+tha"
OCR_LANGUAGES = os.getenv("OCR_LANGUAGES", "eng")


class TesseractOCR:
    """Runs Tesseract on raw image bytes."""

    def __init__(self, languages: Optional[str] = None):
        self.languages = languages or OCR_LANGUAGES

    def extract_text(self, data: bytes) -> str:
        try:
            with Image.open(io.BytesIO(data)) as img:
                text = pytesseract.image_to_string(img.convert("RGB"), lang=self.languages)
        except TesseractNotFoundError:
            logger.warning("Tesseract binary not found in PATH - OCR skipped")
            return ""
        except Exception as e:
            logger.warning(f"Tesseract error: {e}")
            return ""

        if not text.strip():
            logger.warning("OCR returned empty text")
        return text or ""


def merge_ocr_text(texts: Iterable[str]) -> str:
    """Join per-image OCR text in batch order, skipping empty pages."""
    return "\n\n".join(t.strip() for t in texts if t and t.strip())
