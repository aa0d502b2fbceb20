# loyaltyguard/utils/logger.py
"""
Decision audit log for LoyaltyGuard.

Every scored submission appends one row to a CSV file:
- receipt id, decision, score, timestamp
- fraud details flattened with a `fraud_` prefix
- suggested campaign points (when the campaign engine ran)
"""

import csv
import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loyaltyguard.schemas.receipt import FraudResult

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILE = os.path.join("data", "logs", "decisions.csv")

# Column order is fixed so rows stay aligned with the header
FIELDNAMES = [
    "receipt_id",
    "decision",
    "score",
    "timestamp_utc",
    "suggested_points",
    "reasons",
    "fraud_image_count",
    "fraud_ai_detected",
    "fraud_duplicate_images",
    "fraud_duplicate_in_system",
    "fraud_template_matched",
    "fraud_template_id",
    "fraud_template_score",
    "fraud_oracle_score",
    "fraud_oracle_degraded",
    "fraud_pattern_score",
    "fraud_raw_score",
    "fraud_events",
]

_write_lock = threading.Lock()


def _flatten_details(details: Dict[str, Any]) -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for k, v in (details or {}).items():
        if isinstance(v, (list, dict)):
            v = json.dumps(v, ensure_ascii=False, default=str)
        flat[f"fraud_{k}"] = v
    return flat


def decision_to_row(
    receipt_id: str,
    fraud_result: FraudResult,
    suggested_points: Optional[int] = None,
) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "receipt_id": receipt_id,
        "decision": fraud_result.decision.value,
        "score": fraud_result.score,
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "suggested_points": suggested_points,
        "reasons": " | ".join(fraud_result.reasons),
    }
    row.update(_flatten_details(fraud_result.details))
    return row


def log_decision(
    receipt_id: str,
    fraud_result: FraudResult,
    suggested_points: Optional[int] = None,
    log_file: str = DEFAULT_LOG_FILE,
) -> None:
    """
    Append a single decision as a row to the CSV log.

    - Creates the directory and file if they don't exist.
    - Writes header on first write.
    """
    row = decision_to_row(receipt_id, fraud_result, suggested_points)

    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    with _write_lock:
        file_exists = os.path.isfile(log_file)
        with open(log_file, mode="a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDNAMES, extrasaction="ignore")
            if not file_exists:
                writer.writeheader()
            writer.writerow(row)

    logger.debug(f"Logged decision for receipt {receipt_id} to {log_file}")
