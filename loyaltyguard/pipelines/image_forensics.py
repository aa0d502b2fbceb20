"""
Image Forensics Module for LoyaltyGuard.

Per-image signals for receipt photos submitted over chat:
1. Content hash: SHA-256 of the raw bytes (exact-duplicate detection)
2. EXIF inspection: camera make/model, AI-generation software tags,
   missing metadata (soft signal, chat apps recompress and strip EXIF)
3. 64-pixel alignment: both dimensions divisible by 64 (generative output size)
4. Noise check: mean per-channel standard deviation; very low = "too perfect"

Design principles:
- NEVER raises; every failure degrades to "signal absent"
- Works on bytes, no temp files
"""

import hashlib
import io
import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from PIL import Image

from loyaltyguard.schemas.receipt import ImageAnalysis, ImageFraudSummary, MetaSignals, QualityCheck

logger = logging.getLogger(__name__)

AI_SOFTWARE_KEYWORDS = (
    "stable diffusion",
    "dall-e",
    "dalle",
    "midjourney",
    "adobe firefly",
    "ai generated",
    "artificial intelligence",
    "stable-diffusion",
    "pytorch",
    "tensorflow",
)

# Mean channel stdev below this is treated as synthetic-looking
LOW_NOISE_THRESHOLD = 5.0
GENERATIVE_ALIGNMENT = 64

# EXIF tag ids
_TAG_SOFTWARE = 0x0131
_TAG_MAKE = 0x010F
_TAG_MODEL = 0x0110
_TAG_DATETIME = 0x0132
_IFD_EXIF = 0x8769
_TAG_DATETIME_ORIGINAL = 0x9003

NO_EXIF_FLAG = "No EXIF metadata (WhatsApp may have stripped it)"
NO_CAMERA_FLAG = "No camera make/model in EXIF"
ALIGNMENT_FLAG = "Perfect 64-pixel alignment (AI generation pattern)"
LOW_NOISE_REASON = "Unusually low noise/variance (too clean)"


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    text = str(value).strip().strip("\x00")
    return text or None


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def analyze_metadata(img: Image.Image) -> MetaSignals:
    """
    EXIF-based signals for one decoded image.

    Missing EXIF only produces a red flag; it is not treated as AI evidence.
    """
    exif_present = False
    ai_tag = False
    stripped = False
    camera_info = None
    software = None
    timestamp = None
    red_flags: List[str] = []

    try:
        exif = img.getexif()
    except Exception as e:
        logger.warning(f"EXIF read failed: {e}")
        exif = None

    if exif:
        exif_present = True
        try:
            software = _clean(exif.get(_TAG_SOFTWARE))
            if software and any(kw in software.lower() for kw in AI_SOFTWARE_KEYWORDS):
                ai_tag = True
                red_flags.append(f"AI software detected: {software}")

            make = _clean(exif.get(_TAG_MAKE))
            model = _clean(exif.get(_TAG_MODEL))
            camera_info = {"make": make, "model": model}
            if not make and not model:
                red_flags.append(NO_CAMERA_FLAG)

            timestamp = _clean(exif.get(_TAG_DATETIME))
            if not timestamp:
                timestamp = _clean(exif.get_ifd(_IFD_EXIF).get(_TAG_DATETIME_ORIGINAL))
        except Exception as e:
            logger.warning(f"EXIF parsing failed: {e}")
    else:
        stripped = True
        red_flags.append(NO_EXIF_FLAG)

    width, height = img.size
    if width and height and width % GENERATIVE_ALIGNMENT == 0 and height % GENERATIVE_ALIGNMENT == 0:
        red_flags.append(ALIGNMENT_FLAG)

    return MetaSignals(
        exif_present=exif_present,
        ai_software_tag=ai_tag,
        stripped_exif=stripped,
        camera_info=camera_info,
        software_name=software,
        timestamp=timestamp,
        width=width,
        height=height,
        red_flags=tuple(red_flags),
    )


def check_quality(img: Image.Image) -> QualityCheck:
    """Mean of per-channel pixel standard deviations."""
    try:
        if img.mode not in ("L", "RGB", "RGBA"):
            img = img.convert("RGB")
        arr = np.asarray(img, dtype=np.float32)
        if arr.ndim == 2:
            arr = arr[:, :, np.newaxis]
        stdevs = arr.reshape(-1, arr.shape[2]).std(axis=0)
        variance = round(float(np.mean(stdevs)), 4)
    except Exception as e:
        logger.warning(f"Quality check failed: {e}")
        return QualityCheck()

    too_perfect = variance < LOW_NOISE_THRESHOLD
    return QualityCheck(
        variance_score=variance,
        too_perfect=too_perfect,
        reason=LOW_NOISE_REASON if too_perfect else None,
    )


def analyze_image(data: bytes, index: int = 0) -> ImageAnalysis:
    """
    Run all per-image checks. This is the entry point used by the pipeline.

    Args:
        data: raw image bytes as downloaded
        index: position in the batch (0 is the primary image)
    """
    digest = content_hash(data or b"")
    try:
        img = _open(data)
    except Exception as e:
        logger.warning(f"Image {index} could not be decoded: {e}")
        return ImageAnalysis(
            index=index,
            is_primary=index == 0,
            meta_signals=MetaSignals(),
            quality_check=QualityCheck(),
            content_hash=digest,
        )

    with img:
        meta = analyze_metadata(img)
        quality = check_quality(img)

    logger.debug(
        f"Image {index}: {meta.width}x{meta.height} exif={meta.exif_present} "
        f"ai_tag={meta.ai_software_tag} variance={quality.variance_score}"
    )
    return ImageAnalysis(
        index=index,
        is_primary=index == 0,
        meta_signals=meta,
        quality_check=quality,
        content_hash=digest,
    )


def summarize_images(
    analyses: Sequence[ImageAnalysis],
    duplicate_in_system: bool = False,
) -> ImageFraudSummary:
    """Fold per-image records into the submission-level summary."""
    hashes = [a.content_hash for a in analyses]
    red_flags: List[str] = []
    for analysis in analyses:
        for flag in analysis.meta_signals.red_flags:
            if flag not in red_flags:
                red_flags.append(flag)

    return ImageFraudSummary(
        any_ai_detected=any(a.meta_signals.ai_software_tag for a in analyses),
        any_too_perfect=any(a.quality_check.too_perfect for a in analyses),
        duplicate_images=len(set(hashes)) < len(hashes),
        duplicate_in_system=duplicate_in_system,
        red_flags=red_flags,
        image_count=len(analyses),
    )


def describe(analyses: Sequence[ImageAnalysis]) -> List[Dict[str, Any]]:
    """Per-image records for the review payload."""
    return [a.to_dict() for a in analyses]
