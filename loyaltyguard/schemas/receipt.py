# loyaltyguard/schemas/receipt.py

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Decision(str, Enum):
    """Final trust decision for a submission."""
    ACCEPT = "ACCEPT"
    REVIEW = "REVIEW"
    REJECT = "REJECT"


@dataclass(frozen=True)
class ReceiptItem:
    name: str
    price: float = 0.0
    quantity: float = 1.0


@dataclass(frozen=True)
class ReceiptContext:
    """
    Normalized view of a parsed receipt.

    Built once per submission and shared (read-only) by the campaign rule
    evaluator and the scorer.
    - store_name: lowercased
    - currency: uppercased ISO code
    """
    store_name: str
    purchase_date: str
    total: float
    currency: str
    items: Tuple[ReceiptItem, ...] = ()

    def to_context(self) -> Dict[str, Any]:
        """Dict view used for dot-path field resolution in campaign rules."""
        return {
            "receipt": {
                "store_name": self.store_name,
                "purchase_date": self.purchase_date,
                "total": self.total,
                "currency": self.currency,
                "items": [asdict(item) for item in self.items],
            }
        }

    def snapshot(self) -> Dict[str, Any]:
        """Compact copy attached to every campaign suggestion."""
        return {
            "store_name": self.store_name,
            "total": self.total,
            "currency": self.currency,
            "purchase_date": self.purchase_date,
        }


@dataclass(frozen=True)
class MetaSignals:
    """Metadata findings for one image."""
    exif_present: bool = False
    ai_software_tag: bool = False
    stripped_exif: bool = False
    camera_info: Optional[Dict[str, Optional[str]]] = None
    software_name: Optional[str] = None
    timestamp: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    red_flags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QualityCheck:
    """Pixel-noise check for one image."""
    variance_score: Optional[float] = None
    too_perfect: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class ImageAnalysis:
    """
    Per-image forensic record. One per submitted image; never mutated after
    creation. `content_hash` is the SHA-256 hex digest of the raw bytes.
    """
    index: int
    is_primary: bool
    meta_signals: MetaSignals
    quality_check: QualityCheck
    content_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImageFraudSummary:
    """Aggregate over all ImageAnalysis records of one submission."""
    any_ai_detected: bool = False
    any_too_perfect: bool = False
    duplicate_images: bool = False
    duplicate_in_system: bool = False
    red_flags: List[str] = field(default_factory=list)
    image_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReceiptFraudSignals:
    """
    Receipt-level heuristic flags (computed from OCR text and parsed fields).
    """
    non_english: bool = False
    country_mismatch: bool = False
    date_out_of_range: bool = False
    country_hint: Optional[str] = None
    red_flags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FraudResult:
    """
    Output of the fraud score aggregator, one per submission.

    - score: int clamped to [0, 100]
    - reasons: deduplicated, first-seen order
    - details: diagnostic breakdown for the review payload
    """
    score: int
    decision: Decision
    reasons: Tuple[str, ...]
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "decision": self.decision.value,
            "reasons": list(self.reasons),
            "details": dict(self.details),
        }
