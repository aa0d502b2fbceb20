"""
Merchant Template Matcher

Scores OCR text against the merchant catalog:
    candidates = templates whose country fits the hint and whose keyword
                 appears in the lowercased text
    score      = 10 * required patterns found + 10 if a receipt id is found
The best candidate wins (first in catalog order on ties); it counts as a
match when its score reaches MATCH_THRESHOLD.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .registry import MerchantTemplate, get_registry

logger = logging.getLogger(__name__)

PATTERN_POINTS = 10
RECEIPT_ID_POINTS = 10
MATCH_THRESHOLD = 20

NO_KEYWORD_MATCH = "no merchant keyword match"


@dataclass
class TemplateMatchResult:
    """Outcome of matching one submission's OCR text."""
    matched: bool
    template: Optional[MerchantTemplate]
    score: int
    mismatch_reasons: List[str] = field(default_factory=list)

    @property
    def template_id(self) -> Optional[str]:
        return self.template.id if self.template else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "template_id": self.template_id,
            "template": self.template.to_dict() if self.template else None,
            "score": self.score,
            "mismatch_reasons": list(self.mismatch_reasons),
        }


def _is_candidate(template: MerchantTemplate, lowered: str, country_hint: Optional[str]) -> bool:
    if template.country and country_hint and template.country != country_hint:
        return False
    return any(kw in lowered for kw in template.keywords)


def _score(template: MerchantTemplate, ocr_text: str) -> TemplateMatchResult:
    missing = [p for p in template.required_patterns if not p.search(ocr_text)]
    has_receipt_id = any(p.search(ocr_text) for p in template.receipt_id_patterns)

    score = (len(template.required_patterns) - len(missing)) * PATTERN_POINTS
    if has_receipt_id:
        score += RECEIPT_ID_POINTS

    reasons = []
    if missing:
        reasons.append(f"Missing {len(missing)} required patterns")
    if not has_receipt_id:
        reasons.append("No receipt ID found")

    return TemplateMatchResult(matched=False, template=template, score=score, mismatch_reasons=reasons)


def match_merchant_template(
    ocr_text: str,
    country_hint: Optional[str] = None,
    templates: Optional[Sequence[MerchantTemplate]] = None,
) -> TemplateMatchResult:
    """
    Match merged OCR text against the merchant catalog.

    Args:
        ocr_text: merged OCR text of all images in the submission
        country_hint: ISO country code; None disables the country filter
        templates: catalog override (defaults to the global registry)
    """
    catalog = templates if templates is not None else get_registry().get_all()
    text = ocr_text or ""
    lowered = text.lower()
    hint = country_hint.upper() if country_hint else None

    candidates = [t for t in catalog if _is_candidate(t, lowered, hint)]
    if not candidates:
        return TemplateMatchResult(matched=False, template=None, score=0, mismatch_reasons=[NO_KEYWORD_MATCH])

    best: Optional[TemplateMatchResult] = None
    for template in candidates:
        result = _score(template, text)
        if best is None or result.score > best.score:
            best = result

    best.matched = best.score >= MATCH_THRESHOLD
    if best.matched:
        best.mismatch_reasons = []

    logger.debug(f"Template match: {best.template_id} score={best.score} matched={best.matched}")
    return best
