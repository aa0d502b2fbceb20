# loyaltyguard/repository/memory_store.py
"""
In-memory collaborators for local runs and tests.

InMemoryStore plays both the receipt store and the campaign ledger, so a
whole submission can run end to end without WordPress.
"""

import logging
import threading
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loyaltyguard.repository.base import CampaignLedger, Notifier, ReceiptStore
from loyaltyguard.schemas.campaign import RedemptionCount
from loyaltyguard.schemas.receipt import FraudResult

logger = logging.getLogger(__name__)


class InMemoryStore(ReceiptStore, CampaignLedger):
    """Dict-backed receipt store and campaign ledger."""

    def __init__(
        self,
        campaigns: Optional[List[Dict[str, Any]]] = None,
        redemption_counts: Optional[Dict[Any, RedemptionCount]] = None,
        user_redemptions: Optional[Dict[Tuple[str, str], int]] = None,
    ):
        self.campaigns = list(campaigns or [])
        self.redemption_counts = dict(redemption_counts or {})
        self.user_redemptions = dict(user_redemptions or {})

        self.submitters: Dict[str, str] = {}
        self.submissions: Dict[str, Dict[str, Any]] = {}
        self.fraud_results: Dict[str, Dict[str, Any]] = {}
        self.suggestions: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # ReceiptStore
    # ------------------------------------------------------------------

    def resolve_submitter(self, phone: str, name: Optional[str] = None) -> Optional[str]:
        if not phone:
            return None
        with self._lock:
            if phone not in self.submitters:
                self.submitters[phone] = f"profile-{len(self.submitters) + 1}"
                logger.info(f"Created submitter profile {self.submitters[phone]} for {name or phone}")
            return self.submitters[phone]

    def create_submission(self, submitter_id: str, images: Sequence[bytes]) -> str:
        receipt_id = uuid.uuid4().hex[:12]
        with self._lock:
            self.submissions[receipt_id] = {
                "submitter_id": submitter_id,
                "image_count": len(images),
                "image_sizes": [len(img) for img in images],
            }
        return receipt_id

    def persist_fraud_result(
        self,
        receipt_id: str,
        fraud_result: FraudResult,
        review_payload: Dict[str, Any],
    ) -> None:
        with self._lock:
            self.fraud_results[receipt_id] = {
                "fraud_result": fraud_result.to_dict(),
                "review": review_payload,
            }

    def persist_campaign_suggestion(self, receipt_id: str, suggestion_payload: Dict[str, Any]) -> None:
        with self._lock:
            self.suggestions[receipt_id] = suggestion_payload

    # ------------------------------------------------------------------
    # CampaignLedger
    # ------------------------------------------------------------------

    def fetch_active_campaigns(self) -> List[Dict[str, Any]]:
        return list(self.campaigns)

    def get_redemption_count(self, campaign_id: Any) -> RedemptionCount:
        return self.redemption_counts.get(campaign_id, RedemptionCount())

    def get_user_redemption_count(self, campaign_id: Any, user_id: str) -> int:
        return self.user_redemptions.get((campaign_id, user_id), 0)


class RecordingNotifier(Notifier):
    """Keeps outbound messages in a list instead of sending them."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def send(self, conversation_id: str, message: str) -> None:
        logger.info(f"[notify {conversation_id}] {message}")
        with self._lock:
            self.sent.append((conversation_id, message))

    def messages_for(self, conversation_id: str) -> List[str]:
        with self._lock:
            return [m for cid, m in self.sent if cid == conversation_id]
