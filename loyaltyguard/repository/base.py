# loyaltyguard/repository/base.py
"""
Collaborator contracts for LoyaltyGuard.

The core pipelines never talk to storage, ledgers or the chat channel
directly. They go through these narrow interfaces so the backing service
(WordPress REST API, in-memory store for tests/dev, ...) can be swapped
without touching business logic.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from loyaltyguard.schemas.campaign import RedemptionCount
from loyaltyguard.schemas.receipt import FraudResult


class CampaignLedger(ABC):
    """Read-only view of campaigns and their redemption counts."""

    @abstractmethod
    def fetch_active_campaigns(self) -> List[Dict[str, Any]]:
        """Raw definitions of all currently active campaigns."""
        raise NotImplementedError

    @abstractmethod
    def get_redemption_count(self, campaign_id: Any) -> RedemptionCount:
        """Global cap and current redemption count for a campaign."""
        raise NotImplementedError

    @abstractmethod
    def get_user_redemption_count(self, campaign_id: Any, user_id: str) -> int:
        """How many times this submitter has already redeemed the campaign."""
        raise NotImplementedError


class ReceiptStore(ABC):
    """
    Persistence for submissions, fraud results and campaign suggestions.

    Implementations:
    - InMemoryStore: dict-backed, for tests and local runs
    - WordPressClient: custom WP REST endpoints
    """

    @abstractmethod
    def resolve_submitter(self, phone: str, name: Optional[str] = None) -> Optional[str]:
        """Find or create the submitter profile for a chat participant."""
        raise NotImplementedError

    @abstractmethod
    def create_submission(self, submitter_id: str, images: Sequence[bytes]) -> str:
        """Store the submitted images as one receipt and return its receipt id."""
        raise NotImplementedError

    @abstractmethod
    def persist_fraud_result(self, receipt_id: str, fraud_result: FraudResult, review_payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def persist_campaign_suggestion(self, receipt_id: str, suggestion_payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class Notifier(ABC):
    """Outbound chat messages (acknowledgements are sent by the webhook reply)."""

    @abstractmethod
    def send(self, conversation_id: str, message: str) -> None:
        raise NotImplementedError


class HashHistory(ABC):
    """Previously seen image content hashes and receipt ids."""

    @abstractmethod
    def check_duplicate_hash(self, key: str) -> bool:
        """True if this content hash or receipt id was recorded before."""
        raise NotImplementedError

    @abstractmethod
    def record_hashes(self, keys: Sequence[str], receipt_id: Optional[str] = None) -> int:
        """Remember keys of a scored submission; returns how many were new."""
        raise NotImplementedError
