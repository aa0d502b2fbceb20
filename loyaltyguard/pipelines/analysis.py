# loyaltyguard/pipelines/analysis.py
"""
Submission analysis: images in, FraudResult out.

    images ──fan-out──> [forensics + OCR] x N ──fan-in──> merged OCR text
                                                          │
              duplicate history lookups <── content hashes │
                                                          v
                      template match + semantic oracle + receipt heuristics
                                                          │
                                                          v
                                              calculate_fraud_score

Per-image work runs in parallel; the merge waits for every image. External
calls (OCR, duplicate history, oracle) go through guarded_call with their own
timeouts and degrade instead of failing the submission.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loyaltyguard.config.settings import Settings
from loyaltyguard.pipelines.duplicates import receipt_id_key
from loyaltyguard.pipelines.image_forensics import analyze_image, describe, summarize_images
from loyaltyguard.pipelines.ocr import TesseractOCR, merge_ocr_text
from loyaltyguard.pipelines.receipt_signals import compute_receipt_signals
from loyaltyguard.pipelines.scoring import calculate_fraud_score
from loyaltyguard.pipelines.semantic_validator import SemanticValidator
from loyaltyguard.pipelines.templates import (
    MerchantTemplate,
    TemplateMatchResult,
    TemplateRegistry,
    match_merchant_template,
)
from loyaltyguard.repository.base import HashHistory
from loyaltyguard.schemas.receipt import (
    FraudResult,
    ImageAnalysis,
    ImageFraudSummary,
    ReceiptFraudSignals,
)
from loyaltyguard.schemas.semantic import (
    ParsedReceipt,
    SemanticAssessment,
    build_empty_parsed,
    build_failsafe_assessment,
)
from loyaltyguard.utils.lookups import Lookup, guarded_call

logger = logging.getLogger(__name__)

MAX_IMAGE_WORKERS = 8


def history_keys(
    analyses: Sequence[ImageAnalysis],
    parsed: ParsedReceipt,
    assessment: SemanticAssessment,
) -> List[str]:
    """Content hashes plus the receipt id key, when the oracle found one."""
    keys = [a.content_hash for a in analyses]
    receipt_id = parsed.receipt_id or assessment.extracted.receipt_id
    if receipt_id:
        keys.append(receipt_id_key(receipt_id))
    return keys


@dataclass
class SubmissionAnalysis:
    """Everything the fraud pipeline produced for one submission."""
    fraud_result: FraudResult
    image_summary: ImageFraudSummary
    template_check: TemplateMatchResult
    semantic_assessment: SemanticAssessment
    parsed_receipt: ParsedReceipt
    receipt_signals: ReceiptFraudSignals
    image_analyses: List[ImageAnalysis] = field(default_factory=list)
    ocr_text: str = ""
    degraded: List[str] = field(default_factory=list)

    @property
    def hash_keys(self) -> List[str]:
        """Keys to remember for cross-submission duplicate detection."""
        return history_keys(self.image_analyses, self.parsed_receipt, self.semantic_assessment)

    def review_payload(self) -> Dict[str, Any]:
        """Diagnostic payload stored next to the fraud result for reviewers."""
        return {
            "fraud_result": self.fraud_result.to_dict(),
            "image_fraud_summary": self.image_summary.to_dict(),
            "images": describe(self.image_analyses),
            "template_check": self.template_check.to_dict(),
            "semantic_assessment": self.semantic_assessment.model_dump(),
            "parsed_receipt": self.parsed_receipt.model_dump(),
            "receipt_signals": self.receipt_signals.to_dict(),
            "degraded_signals": list(self.degraded),
        }


class SubmissionAnalyzer:
    """
    Runs the fraud pipeline for one submission at a time.

    Collaborators are injected; OCR defaults to Tesseract and the template
    catalog to the configured YAML file.
    """

    def __init__(
        self,
        settings: Settings,
        validator: SemanticValidator,
        history: Optional[HashHistory] = None,
        ocr: Any = None,
        templates: Optional[Sequence[MerchantTemplate]] = None,
    ):
        self.settings = settings
        self.validator = validator
        self.history = history
        self.ocr = ocr or TesseractOCR()
        if templates is None:
            templates = TemplateRegistry(settings.merchant_templates_file).get_all()
        self.templates = list(templates)

    # ------------------------------------------------------------------
    # Fan-out / fan-in
    # ------------------------------------------------------------------

    def _analyze_one(self, indexed: Tuple[int, bytes]) -> Tuple[ImageAnalysis, Lookup[str]]:
        index, data = indexed
        analysis = analyze_image(data, index=index)
        text = guarded_call(
            self.ocr.extract_text,
            data,
            timeout=self.settings.ocr_timeout,
            fallback="",
            label=f"OCR of image {index}",
        )
        return analysis, text

    def _analyze_images(
        self, images: Sequence[bytes], degraded: List[str]
    ) -> Tuple[List[ImageAnalysis], List[str]]:
        if not images:
            return [], []
        workers = min(MAX_IMAGE_WORKERS, len(images))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="image") as pool:
            results = list(pool.map(self._analyze_one, enumerate(images)))
        analyses = [r[0] for r in results]
        texts = []
        for _, lookup in results:
            if lookup.degraded:
                degraded.append(f"ocr:{lookup.error}")
            texts.append(lookup.value or "")
        return analyses, texts

    # ------------------------------------------------------------------
    # Guarded collaborators
    # ------------------------------------------------------------------

    def _seen_before(self, keys: Sequence[str], degraded: List[str]) -> bool:
        if self.history is None:
            return False
        found = False
        for key in dict.fromkeys(keys):
            lookup = guarded_call(
                self.history.check_duplicate_hash,
                key,
                timeout=self.settings.lookup_timeout,
                fallback=False,
                label="duplicate hash lookup",
            )
            if lookup.degraded:
                degraded.append(f"duplicate_lookup:{lookup.error}")
            found = found or bool(lookup.value)
        return found

    def _semantic(
        self,
        ocr_text: str,
        country_hint: str,
        candidates: Sequence[str],
        degraded: List[str],
    ) -> Tuple[ParsedReceipt, SemanticAssessment]:
        lookup = guarded_call(
            self.validator.parse_and_validate,
            ocr_text,
            country_hint,
            candidates,
            timeout=self.settings.oracle_timeout,
            fallback=(build_empty_parsed(), build_failsafe_assessment("oracle timeout")),
            label="semantic oracle",
        )
        parsed, assessment = lookup.value
        if lookup.degraded:
            degraded.append(f"semantic_oracle:{lookup.error}")
        elif assessment.degraded:
            degraded.append(f"semantic_oracle:{assessment.explanation}")
        return parsed, assessment

    def record_history(self, analysis: SubmissionAnalysis, receipt_id: Optional[str]) -> int:
        """Remember this submission's hashes; failures are logged, not raised."""
        if self.history is None:
            return 0
        lookup = guarded_call(
            self.history.record_hashes,
            analysis.hash_keys,
            receipt_id,
            timeout=self.settings.lookup_timeout,
            fallback=0,
            label="hash history write",
        )
        return lookup.value

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def analyze_submission(
        self,
        images: Sequence[bytes],
        country_hint: Optional[str] = None,
        today: Optional[date] = None,
    ) -> SubmissionAnalysis:
        """
        Analyze all images of one submission.

        Args:
            images: raw image bytes in arrival order (first is primary)
            country_hint: expected ISO country (defaults to settings)
            today: reference date for the recency window

        Returns:
            SubmissionAnalysis with the FraudResult and its inputs
        """
        hint = (country_hint or self.settings.country_hint or "").upper()
        degraded: List[str] = []

        analyses, texts = self._analyze_images(images, degraded)
        ocr_text = merge_ocr_text(texts)
        if not ocr_text:
            degraded.append("ocr:empty")

        template_check = match_merchant_template(ocr_text, hint, self.templates)
        candidates = []
        if template_check.template is not None:
            candidates.append(template_check.template.display_name or template_check.template.id)

        parsed, assessment = self._semantic(ocr_text, hint, candidates, degraded)

        keys = history_keys(analyses, parsed, assessment)
        duplicate_in_system = self._seen_before(keys, degraded)

        image_summary = summarize_images(analyses, duplicate_in_system=duplicate_in_system)
        receipt_signals = compute_receipt_signals(
            ocr_text,
            parsed,
            assessment,
            hint,
            self.settings.expected_currencies,
            date_window_days=self.settings.date_window_days,
            english_ratio_threshold=self.settings.english_ratio_threshold,
            today=today,
        )

        fraud_result = calculate_fraud_score(image_summary, template_check, assessment, receipt_signals)
        logger.info(
            f"Submission scored: {fraud_result.decision.value} ({fraud_result.score}) "
            f"images={len(analyses)} template={template_check.template_id} degraded={degraded}"
        )

        return SubmissionAnalysis(
            fraud_result=fraud_result,
            image_summary=image_summary,
            template_check=template_check,
            semantic_assessment=assessment,
            parsed_receipt=parsed,
            receipt_signals=receipt_signals,
            image_analyses=analyses,
            ocr_text=ocr_text,
            degraded=degraded,
        )


def analyze_submission(
    images: Sequence[bytes],
    country_hint: Optional[str] = None,
    analyzer: Optional[SubmissionAnalyzer] = None,
) -> SubmissionAnalysis:
    """Module-level convenience wrapper using settings from the environment."""
    if analyzer is None:
        settings = Settings.from_env()
        analyzer = SubmissionAnalyzer(settings, SemanticValidator())
    return analyzer.analyze_submission(images, country_hint)
