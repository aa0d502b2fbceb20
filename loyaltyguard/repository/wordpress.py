# loyaltyguard/repository/wordpress.py
"""
WordPress REST adapter.

Talks to the custom `wp-json/custom/v1` endpoints of the loyalty site with
application-password basic auth. Each method is one HTTP call; errors are
raised (requests.HTTPError and friends) and handled by the caller, which
either fails open (ledger reads) or logs (writes).
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from loyaltyguard.repository.base import CampaignLedger, ReceiptStore
from loyaltyguard.schemas.campaign import RedemptionCount
from loyaltyguard.schemas.receipt import FraudResult

logger = logging.getLogger(__name__)

API_PREFIX = "/wp-json/custom/v1"


class WordPressClient(ReceiptStore, CampaignLedger):
    """Receipt store and campaign ledger backed by the WordPress site."""

    def __init__(
        self,
        base_url: str,
        user: str,
        app_password: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/") + API_PREFIX
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (user, app_password)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.session.get(self._url(path), params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _post(self, path: str, **kwargs: Any) -> Any:
        response = self.session.post(self._url(path), timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response.json() if response.content else {}

    # ------------------------------------------------------------------
    # ReceiptStore
    # ------------------------------------------------------------------

    def resolve_submitter(self, phone: str, name: Optional[str] = None) -> Optional[str]:
        data = self._post("store-whatsapp-user", json={"phone": phone, "name": name})
        profile_id = data.get("profileId") or data.get("post_id") or data.get("id")
        return str(profile_id) if profile_id else None

    def create_submission(self, submitter_id: str, images: Sequence[bytes]) -> str:
        """Upload every image; the first upload creates the receipt post."""
        receipt_id: Optional[str] = None
        for index, data in enumerate(images):
            form = {
                "title": "Receipt Upload",
                "alt_text": "Uploaded receipt",
                "description": "Receipt image uploaded by user",
                "profile_id": submitter_id,
            }
            if receipt_id:
                form["receipt_id"] = receipt_id
            files = {"file": (f"receipt_{submitter_id}_{index}.jpg", data, "image/jpeg")}
            result = self._post("upload", data=form, files=files)
            receipt_id = receipt_id or str(result.get("receipt_id") or "")

        if not receipt_id:
            raise ValueError("WordPress upload returned no receipt_id")
        logger.info(f"Uploaded {len(images)} image(s) as receipt {receipt_id}")
        return receipt_id

    def persist_fraud_result(
        self,
        receipt_id: str,
        fraud_result: FraudResult,
        review_payload: Dict[str, Any],
    ) -> None:
        parsed = review_payload.get("parsed_receipt") or {}
        self._post(
            f"receipt/{receipt_id}",
            json={
                "store_name": parsed.get("store_name"),
                "purchase_date": parsed.get("purchase_date"),
                "total_amount": parsed.get("total_amount"),
                "currency": parsed.get("currency"),
                "items": parsed.get("items") or [],
                "fraud_result": fraud_result.to_dict(),
                "fraud_review": review_payload,
            },
        )

    def persist_campaign_suggestion(self, receipt_id: str, suggestion_payload: Dict[str, Any]) -> None:
        self._post(
            "campaign/save-suggestion",
            json={"receipt_id": receipt_id, "suggestion": suggestion_payload},
        )

    # ------------------------------------------------------------------
    # CampaignLedger
    # ------------------------------------------------------------------

    def fetch_active_campaigns(self) -> List[Dict[str, Any]]:
        data = self._get("campaign/list")
        return data.get("campaigns") or []

    def get_redemption_count(self, campaign_id: Any) -> RedemptionCount:
        data = self._get("campaign/redemption-count", params={"campaign_post_id": campaign_id})
        return RedemptionCount(max=data.get("redemption_limit"), count=data.get("redemption_count"))

    def get_user_redemption_count(self, campaign_id: Any, user_id: str) -> int:
        data = self._get("campaign/ledger", params={"profile_id": user_id})
        entries = data.get("entries") or []
        return sum(1 for e in entries if str(e.get("campaign_id")) == str(campaign_id))
