"""
Batch processing: the dispatch target of the intake batcher.

For one batch: download media, register the submission, score it, suggest
campaign points, persist both results, and send the single outcome message.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from loyaltyguard.campaigns.context import build_receipt_context
from loyaltyguard.campaigns.engine import evaluate_campaigns
from loyaltyguard.config.settings import Settings
from loyaltyguard.errors import MissingSubmitterError
from loyaltyguard.intake.batching import Batch
from loyaltyguard.intake.media import MediaDownloadError, TwilioChannel
from loyaltyguard.intake.messages import PROCESSING_ERROR, outcome_message
from loyaltyguard.pipelines.analysis import SubmissionAnalysis, SubmissionAnalyzer
from loyaltyguard.repository.base import CampaignLedger, Notifier, ReceiptStore
from loyaltyguard.schemas.campaign import CampaignEvaluation
from loyaltyguard.utils.logger import log_decision

logger = logging.getLogger(__name__)


@dataclass
class ProcessingOutcome:
    receipt_id: str
    analysis: SubmissionAnalysis
    campaigns: CampaignEvaluation


class SubmissionProcessor:
    """Runs the fraud and campaign pipelines for one batch at a time."""

    def __init__(
        self,
        settings: Settings,
        analyzer: SubmissionAnalyzer,
        store: ReceiptStore,
        ledger: CampaignLedger,
        notifier: Notifier,
        channel: Optional[TwilioChannel] = None,
    ):
        self.settings = settings
        self.analyzer = analyzer
        self.store = store
        self.ledger = ledger
        self.notifier = notifier
        self.channel = channel

    def _download(self, batch: Batch) -> List[bytes]:
        if self.channel is None:
            raise MediaDownloadError("No media channel configured")
        images = []
        for ref in batch.media_refs:
            try:
                images.append(self.channel.fetch_media(ref))
            except MediaDownloadError as e:
                logger.warning(f"Batch {batch.batch_id}: {e}")
        if not images:
            raise MediaDownloadError(f"No media could be downloaded for batch {batch.batch_id}")
        return images

    def process_batch(self, batch: Batch, images: Optional[List[bytes]] = None) -> ProcessingOutcome:
        """
        Process one batch end to end.

        Raises:
            MissingSubmitterError: the batch has no submitter id
            MediaDownloadError: none of the images could be fetched
        """
        if not batch.submitter_id:
            raise MissingSubmitterError(f"conversation {batch.conversation_id}")

        if images is None:
            images = self._download(batch)

        receipt_id = self.store.create_submission(batch.submitter_id, images)
        logger.info(f"Batch {batch.batch_id} registered as receipt {receipt_id}")

        analysis = self.analyzer.analyze_submission(images, self.settings.country_hint)
        fraud_result = analysis.fraud_result

        try:
            self.store.persist_fraud_result(receipt_id, fraud_result, analysis.review_payload())
        except Exception as e:
            logger.error(f"Saving fraud result for receipt {receipt_id} failed: {e}")

        self.analyzer.record_history(analysis, receipt_id)

        currency = self.settings.expected_currencies.get(self.settings.country_hint, "SGD")
        ctx = build_receipt_context(analysis.parsed_receipt, default_currency=currency)
        campaigns = evaluate_campaigns(
            ctx,
            batch.submitter_id,
            self.ledger,
            lookup_timeout=self.settings.lookup_timeout,
        )

        try:
            self.store.persist_campaign_suggestion(receipt_id, campaigns.to_payload())
            logger.info(
                f"Campaign suggestion saved for receipt {receipt_id}: "
                f"{campaigns.total_suggested_points} point(s)"
            )
        except Exception as e:
            logger.error(f"Saving campaign suggestion for receipt {receipt_id} failed: {e}")

        try:
            log_decision(
                receipt_id,
                fraud_result,
                campaigns.total_suggested_points,
                log_file=self.settings.decision_log_file,
            )
        except OSError as e:
            logger.warning(f"Decision log write failed: {e}")

        self.notifier.send(batch.conversation_id, outcome_message(fraud_result, analysis.parsed_receipt))
        return ProcessingOutcome(receipt_id=receipt_id, analysis=analysis, campaigns=campaigns)

    def report_failure(self, batch: Batch, error: Exception) -> None:
        """Tell the user their batch failed (details stay in the logs)."""
        self.notifier.send(batch.conversation_id, PROCESSING_ERROR)
