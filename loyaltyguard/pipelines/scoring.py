# loyaltyguard/pipelines/scoring.py
"""
Fraud score aggregation.

Purely additive: each signal that fires adds a fixed number of points and
nothing ever subtracts, so adding a red flag can only raise the score.
The total is clamped to [0, 100] and mapped to a decision:
    score >= 70  REJECT
    score >= 40  REVIEW
    otherwise    ACCEPT

calculate_fraud_score is pure: no I/O, no hidden state.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from loyaltyguard.pipelines.templates.matcher import TemplateMatchResult
from loyaltyguard.schemas.receipt import Decision, FraudResult, ImageFraudSummary, ReceiptFraudSignals
from loyaltyguard.schemas.semantic import SemanticAssessment

SCORING_VERSION = "fraud-v1"

REJECT_THRESHOLD = 70
REVIEW_THRESHOLD = 40

# Rule id -> points
POINTS = {
    "AI_GENERATED": 60,
    "TOO_PERFECT": 10,
    "DUPLICATE_IN_BATCH": 25,
    "DUPLICATE_IN_SYSTEM": 35,
    "NON_ENGLISH": 25,
    "COUNTRY_MISMATCH": 40,
    "DATE_OUT_OF_RANGE": 50,
    "NO_TEMPLATE_MATCH": 20,
    "WEAK_TEMPLATE_MATCH": 10,
    "MATH_INCONSISTENT": 35,
    "TAX_IMPLAUSIBLE": 20,
    "FORMATTING_IMPLAUSIBLE": 15,
    "MERCHANT_IMPLAUSIBLE": 10,
}

PATTERN_POINTS_EACH = 5
PATTERN_POINTS_CAP = 25
ORACLE_WEIGHT = 30
WEAK_TEMPLATE_SCORE = 30


@dataclass(frozen=True)
class ScoreEvent:
    rule_id: str
    points: int
    reason: str


def _emit(events: List[ScoreEvent], reasons: List[str], rule_id: str, reason: str) -> None:
    events.append(ScoreEvent(rule_id=rule_id, points=POINTS[rule_id], reason=reason))
    reasons.append(reason)


def decide(score: int) -> Decision:
    if score >= REJECT_THRESHOLD:
        return Decision.REJECT
    if score >= REVIEW_THRESHOLD:
        return Decision.REVIEW
    return Decision.ACCEPT


def _dedupe(reasons: List[str]) -> List[str]:
    seen = set()
    unique = []
    for reason in reasons:
        if reason not in seen:
            seen.add(reason)
            unique.append(reason)
    return unique


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def calculate_fraud_score(
    image_summary: ImageFraudSummary,
    template_check: TemplateMatchResult,
    assessment: SemanticAssessment,
    receipt_signals: Optional[ReceiptFraudSignals] = None,
) -> FraudResult:
    """
    Combine all fraud signals of one submission into a FraudResult.

    Image and receipt-level red flags are carried into the reasons verbatim
    but score nothing on their own.
    """
    events: List[ScoreEvent] = []
    reasons: List[str] = []
    signals = receipt_signals or ReceiptFraudSignals()

    # ------------------------------------------------------------------
    # Image level
    # ------------------------------------------------------------------
    if image_summary.any_ai_detected:
        _emit(events, reasons, "AI_GENERATED", "AI-generated image detected")
    if image_summary.any_too_perfect:
        _emit(events, reasons, "TOO_PERFECT", "One or more images unusually clean/perfect")
    if image_summary.duplicate_images:
        _emit(events, reasons, "DUPLICATE_IN_BATCH", "Duplicate images detected in submission")
    if image_summary.duplicate_in_system:
        _emit(events, reasons, "DUPLICATE_IN_SYSTEM", "Receipt image already submitted before")
    reasons.extend(image_summary.red_flags)

    # ------------------------------------------------------------------
    # Receipt level
    # ------------------------------------------------------------------
    if signals.non_english:
        _emit(events, reasons, "NON_ENGLISH", "Receipt is not in English")
    if signals.country_mismatch:
        country = signals.country_hint or "the expected country"
        _emit(events, reasons, "COUNTRY_MISMATCH", f"Receipt is not from {country}")
    if signals.date_out_of_range:
        _emit(events, reasons, "DATE_OUT_OF_RANGE", "Receipt date is outside allowed time range")
    reasons.extend(signals.red_flags)

    # ------------------------------------------------------------------
    # Merchant template
    # ------------------------------------------------------------------
    if not template_check.matched:
        _emit(events, reasons, "NO_TEMPLATE_MATCH", "Does not match known merchant template")
    elif template_check.score < WEAK_TEMPLATE_SCORE:
        _emit(events, reasons, "WEAK_TEMPLATE_MATCH", "Weak merchant template match")

    # ------------------------------------------------------------------
    # Semantic checks
    # ------------------------------------------------------------------
    checks = assessment.checks
    if not checks.math_consistent:
        _emit(events, reasons, "MATH_INCONSISTENT", "Math inconsistency (subtotal + tax != total)")
    if not checks.tax_plausible:
        _emit(events, reasons, "TAX_IMPLAUSIBLE", "Tax rate implausible for country")
    if not checks.formatting_plausible:
        _emit(events, reasons, "FORMATTING_IMPLAUSIBLE", "Receipt formatting suspicious")
    if not checks.merchant_plausible:
        _emit(events, reasons, "MERCHANT_IMPLAUSIBLE", "Merchant name/details implausible")

    pattern_count = len(checks.suspicious_patterns)
    pattern_score = min(PATTERN_POINTS_CAP, pattern_count * PATTERN_POINTS_EACH)
    if pattern_score > 0:
        reasons.append(f"{pattern_count} suspicious patterns detected")

    oracle_score = _round_half_up(assessment.fraud_likelihood * ORACLE_WEIGHT)

    raw_score = sum(e.points for e in events) + pattern_score + oracle_score
    score = max(0, min(100, raw_score))

    details: Dict[str, Any] = {
        "image_count": image_summary.image_count,
        "ai_detected": image_summary.any_ai_detected,
        "duplicate_images": image_summary.duplicate_images,
        "duplicate_in_system": image_summary.duplicate_in_system,
        "template_matched": template_check.matched,
        "template_id": template_check.template_id,
        "template_score": template_check.score,
        "oracle_score": oracle_score,
        "oracle_degraded": assessment.degraded,
        "pattern_score": pattern_score,
        "raw_score": raw_score,
        "events": [asdict(e) for e in events],
        "scoring_version": SCORING_VERSION,
    }

    return FraudResult(
        score=score,
        decision=decide(score),
        reasons=tuple(_dedupe(reasons)),
        details=details,
    )
