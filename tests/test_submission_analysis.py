"""
End-to-end tests for submission analysis and batch processing, with fake
OCR and a fake semantic oracle.

Verifies:
1. Deterministic scoring for the same input
2. Fan-out/fan-in: OCR text merged in image order
3. Cross-submission duplicates via the hash history
4. Oracle timeout / failure degrades to the fail-safe assessment
5. SubmissionProcessor persists, logs and notifies once per batch

Running:
    python -m pytest tests/test_submission_analysis.py -v
"""

import csv
import io
import time
from datetime import date

import numpy as np
import pytest
from PIL import Image

from loyaltyguard.config.settings import Settings
from loyaltyguard.errors import MissingSubmitterError
from loyaltyguard.intake.batching import Batch
from loyaltyguard.intake.media import MediaDownloadError
from loyaltyguard.intake.messages import PROCESSING_ERROR
from loyaltyguard.intake.processor import SubmissionProcessor
from loyaltyguard.pipelines.analysis import SubmissionAnalyzer
from loyaltyguard.pipelines.duplicates import FingerprintStore
from loyaltyguard.repository.memory_store import InMemoryStore, RecordingNotifier
from loyaltyguard.schemas.receipt import Decision
from loyaltyguard.schemas.semantic import (
    ParsedReceipt,
    SemanticAssessment,
    SemanticChecks,
    build_empty_parsed,
    build_failsafe_assessment,
)

TODAY = date(2024, 5, 10)

NATUREL_TEXT = """NATUREL ORGANIC
Receipt No: INV20240501
Date: 08/05/2024 14:32
Organic Milk $13.00
Total $52.40"""


# =============================================================================
# Fakes
# =============================================================================

def _photo(seed: int) -> bytes:
    rng = np.random.default_rng(seed)
    arr = np.clip(235 + rng.normal(0, 25, (120, 90, 3)), 0, 255).astype(np.uint8)
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


class FakeOCR:
    """Returns preset text per image (by content), empty otherwise."""

    def __init__(self, texts=None):
        self.texts = texts or {}

    def extract_text(self, data: bytes) -> str:
        return self.texts.get(data, "")


class FailingOCR:
    """OCR engine that errors on one image and optionally stalls."""

    def __init__(self, texts=None, fail_on=None, delay=0.0):
        self.texts = texts or {}
        self.fail_on = fail_on
        self.delay = delay

    def extract_text(self, data: bytes) -> str:
        if self.delay:
            time.sleep(self.delay)
        if self.fail_on is None or data == self.fail_on:
            raise RuntimeError("vision api 503")
        return self.texts.get(data, "")


class FakeValidator:

    def __init__(self, parsed=None, assessment=None, delay=0.0, error=None):
        self.parsed = parsed or ParsedReceipt(
            receipt_id="INV20240501",
            store_name="Naturel Organic",
            purchase_date="2024-05-08",
            total_amount="52.40",
            currency="SGD",
            items=[{"name": "Organic Milk", "price": 13.0, "quantity": 1}],
        )
        self.assessment = assessment or SemanticAssessment(
            checks=SemanticChecks(
                math_consistent=True,
                tax_plausible=True,
                formatting_plausible=True,
                merchant_plausible=True,
            ),
            fraud_likelihood=0.0,
        )
        self.delay = delay
        self.error = error
        self.calls = []

    def parse_and_validate(self, ocr_text, country_hint, merchant_candidates=()):
        self.calls.append((ocr_text, country_hint, list(merchant_candidates)))
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.parsed, self.assessment


@pytest.fixture
def settings(tmp_path):
    return Settings(
        country_hint="SG",
        fingerprint_db=str(tmp_path / "fingerprints.db"),
        decision_log_file=str(tmp_path / "logs" / "decisions.csv"),
        lookup_timeout=2.0,
        oracle_timeout=2.0,
    )


def _analyzer(settings, validator=None, texts=None, history=True):
    return SubmissionAnalyzer(
        settings,
        validator or FakeValidator(),
        history=FingerprintStore(settings.fingerprint_db) if history else None,
        ocr=FakeOCR(texts),
    )


# =============================================================================
# SubmissionAnalyzer
# =============================================================================

class TestSubmissionAnalyzer:

    def test_genuine_receipt_accepted(self, settings):
        image = _photo(1)
        analysis = _analyzer(settings, texts={image: NATUREL_TEXT}).analyze_submission([image], "SG", today=TODAY)

        assert analysis.template_check.matched is True
        assert analysis.fraud_result.decision == Decision.ACCEPT
        assert analysis.image_summary.image_count == 1
        assert analysis.degraded == []

    def test_scoring_is_deterministic(self, settings):
        images = [_photo(1), _photo(2)]
        texts = {images[0]: NATUREL_TEXT}
        first = _analyzer(settings, texts=texts, history=False).analyze_submission(images, "SG", today=TODAY)
        second = _analyzer(settings, texts=texts, history=False).analyze_submission(images, "SG", today=TODAY)
        assert first.fraud_result.score == second.fraud_result.score
        assert first.fraud_result.reasons == second.fraud_result.reasons

    def test_ocr_text_merged_in_image_order(self, settings):
        images = [_photo(s) for s in range(4)]
        texts = {img: f"page {i}" for i, img in enumerate(images)}
        analysis = _analyzer(settings, texts=texts).analyze_submission(images, "SG", today=TODAY)
        assert analysis.ocr_text == "page 0\n\npage 1\n\npage 2\n\npage 3"
        assert [a.index for a in analysis.image_analyses] == [0, 1, 2, 3]

    def test_merchant_candidate_passed_to_oracle(self, settings):
        image = _photo(1)
        validator = FakeValidator()
        _analyzer(settings, validator, texts={image: NATUREL_TEXT}).analyze_submission([image], "SG", today=TODAY)
        assert validator.calls[0][2] == ["Naturel (Singapore)"]

    def test_same_image_twice_in_batch(self, settings):
        image = _photo(1)
        analysis = _analyzer(settings, texts={image: NATUREL_TEXT}).analyze_submission([image, image], "SG", today=TODAY)
        assert analysis.image_summary.duplicate_images is True
        assert "Duplicate images detected in submission" in analysis.fraud_result.reasons

    def test_resubmission_detected_through_history(self, settings):
        image = _photo(1)
        analyzer = _analyzer(settings, texts={image: NATUREL_TEXT})

        first = analyzer.analyze_submission([image], "SG", today=TODAY)
        assert first.image_summary.duplicate_in_system is False
        assert analyzer.record_history(first, "r1") == 2

        second = analyzer.analyze_submission([image], "SG", today=TODAY)
        assert second.image_summary.duplicate_in_system is True
        assert second.fraud_result.score == first.fraud_result.score + 35

    def test_rephotographed_receipt_detected_by_receipt_id(self, settings):
        analyzer = _analyzer(settings)
        first = analyzer.analyze_submission([_photo(1)], "SG", today=TODAY)
        analyzer.record_history(first, "r1")
        second = analyzer.analyze_submission([_photo(2)], "SG", today=TODAY)
        assert second.image_summary.duplicate_in_system is True

    def test_oracle_timeout_uses_failsafe(self, settings):
        settings.oracle_timeout = 0.05
        analysis = _analyzer(settings, FakeValidator(delay=0.5)).analyze_submission([_photo(1)], "SG", today=TODAY)
        assert analysis.semantic_assessment.degraded is True
        assert analysis.semantic_assessment.fraud_likelihood == 0.5
        assert any(d.startswith("semantic_oracle:") for d in analysis.degraded)

    def test_oracle_error_uses_failsafe(self, settings):
        validator = FakeValidator(error=RuntimeError("boom"))
        analysis = _analyzer(settings, validator).analyze_submission([_photo(1)], "SG", today=TODAY)
        assert analysis.semantic_assessment.degraded is True

    def test_history_failure_is_not_fatal(self, settings):
        class BrokenHistory:
            def check_duplicate_hash(self, key):
                raise OSError("disk gone")

        analyzer = _analyzer(settings, history=False)
        analyzer.history = BrokenHistory()
        analysis = analyzer.analyze_submission([_photo(1)], "SG", today=TODAY)
        assert analysis.image_summary.duplicate_in_system is False
        assert any(d.startswith("duplicate_lookup:") for d in analysis.degraded)

    def test_no_ocr_text_is_degraded_not_fatal(self, settings):
        validator = FakeValidator(parsed=build_empty_parsed(), assessment=build_failsafe_assessment())
        analysis = _analyzer(settings, validator).analyze_submission([_photo(1)], "SG", today=TODAY)
        assert "ocr:empty" in analysis.degraded
        assert analysis.template_check.matched is False

    def test_ocr_error_degrades_instead_of_aborting(self, settings):
        analyzer = _analyzer(settings)
        analyzer.ocr = FailingOCR()
        analysis = analyzer.analyze_submission([_photo(1)], "SG", today=TODAY)

        assert analysis.fraud_result.decision in (Decision.ACCEPT, Decision.REVIEW, Decision.REJECT)
        assert analysis.ocr_text == ""
        assert "ocr:vision api 503" in analysis.degraded

    def test_ocr_error_on_one_image_keeps_the_others(self, settings):
        good, bad = _photo(1), _photo(2)
        analyzer = _analyzer(settings)
        analyzer.ocr = FailingOCR(texts={good: NATUREL_TEXT}, fail_on=bad)
        analysis = analyzer.analyze_submission([good, bad], "SG", today=TODAY)

        assert analysis.ocr_text == NATUREL_TEXT
        assert analysis.template_check.matched is True
        assert analysis.image_summary.image_count == 2
        assert analysis.degraded == ["ocr:vision api 503"]

    def test_ocr_timeout(self, settings):
        settings.ocr_timeout = 0.05
        analyzer = _analyzer(settings)
        analyzer.ocr = FailingOCR(fail_on=b"never", delay=0.5)
        analysis = analyzer.analyze_submission([_photo(1)], "SG", today=TODAY)
        assert "ocr:timeout" in analysis.degraded

    def test_review_payload(self, settings):
        image = _photo(1)
        payload = _analyzer(settings, texts={image: NATUREL_TEXT}).analyze_submission([image], "SG", today=TODAY).review_payload()
        assert payload["fraud_result"]["decision"] == "ACCEPT"
        assert payload["template_check"]["template_id"] == "naturel_sg"
        assert payload["parsed_receipt"]["store_name"] == "Naturel Organic"
        assert len(payload["images"]) == 1


# =============================================================================
# SubmissionProcessor
# =============================================================================

CAMPAIGN = {
    "campaign_post_id": 11,
    "title": "Naturel Double Points",
    "brand_id": 3,
    "rules": [{
        "id": "double",
        "when": {"all": [{"field": "receipt.store_name", "op": "contains", "value": "naturel"}]},
        "then": [{"mode": "per_dollar", "rate": 1, "multiplier": 2}],
    }],
}


def _processor(settings, store, notifier, images_text=None, validator=None):
    analyzer = _analyzer(settings, validator, texts=images_text)
    return SubmissionProcessor(settings, analyzer, store, store, notifier)


class TestSubmissionProcessor:

    def test_batch_end_to_end(self, settings):
        image = _photo(1)
        store = InMemoryStore([CAMPAIGN])
        notifier = RecordingNotifier()
        processor = _processor(settings, store, notifier, {image: NATUREL_TEXT})
        batch = Batch("b1", "+6590000000", "profile-1", ("url-1",))

        outcome = processor.process_batch(batch, images=[image])

        assert outcome.receipt_id in store.submissions
        assert store.fraud_results[outcome.receipt_id]["fraud_result"]["decision"] in ("ACCEPT", "REVIEW")
        suggestion = store.suggestions[outcome.receipt_id]
        assert suggestion["matched"] is True
        assert suggestion["total_suggested_points"] == 104
        assert len(notifier.messages_for("+6590000000")) == 1

        with open(settings.decision_log_file, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert rows[0]["receipt_id"] == outcome.receipt_id
        assert rows[0]["suggested_points"] == "104"

    def test_missing_submitter_is_fatal(self, settings):
        processor = _processor(settings, InMemoryStore(), RecordingNotifier())
        with pytest.raises(MissingSubmitterError):
            processor.process_batch(Batch("b1", "+659", None, ("url",)), images=[_photo(1)])

    def test_no_media_channel_means_no_images(self, settings):
        processor = _processor(settings, InMemoryStore(), RecordingNotifier())
        with pytest.raises(MediaDownloadError):
            processor.process_batch(Batch("b1", "+659", "p1", ("url",)))

    def test_partial_download_failure_skips_image(self, settings):
        good = _photo(1)

        class Channel:
            def fetch_media(self, url):
                if url == "bad":
                    raise MediaDownloadError("404")
                return good

        store = InMemoryStore()
        processor = _processor(settings, store, RecordingNotifier())
        processor.channel = Channel()
        outcome = processor.process_batch(Batch("b1", "+659", "p1", ("bad", "good")))
        assert store.submissions[outcome.receipt_id]["image_count"] == 1

    def test_persistence_failure_still_notifies(self, settings):
        class FailingStore(InMemoryStore):
            def persist_fraud_result(self, *args):
                raise ConnectionError("wp down")

            def persist_campaign_suggestion(self, *args):
                raise ConnectionError("wp down")

        notifier = RecordingNotifier()
        processor = _processor(settings, FailingStore(), notifier)
        processor.process_batch(Batch("b1", "+659", "p1", ("url",)), images=[_photo(1)])
        assert len(notifier.messages_for("+659")) == 1

    def test_report_failure_sends_generic_message(self, settings):
        notifier = RecordingNotifier()
        processor = _processor(settings, InMemoryStore(), notifier)
        processor.report_failure(Batch("b1", "+659", None, ("url",)), MissingSubmitterError("x"))
        assert notifier.messages_for("+659") == [PROCESSING_ERROR]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
