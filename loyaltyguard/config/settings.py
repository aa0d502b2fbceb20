"""
Runtime settings for LoyaltyGuard, read from environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

DEFAULT_TEMPLATES_FILE = Path(__file__).parent.parent / "pipelines" / "templates" / "merchants.yaml"


def _parse_currency_map(raw: str) -> Dict[str, str]:
    """Parse 'SG:SGD,TH:THB' into {'SG': 'SGD', 'TH': 'THB'}."""
    mapping: Dict[str, str] = {}
    for pair in raw.split(","):
        if ":" not in pair:
            continue
        country, currency = pair.split(":", 1)
        country, currency = country.strip().upper(), currency.strip().upper()
        if country and currency:
            mapping[country] = currency
    return mapping


@dataclass
class Settings:
    """Pipeline, batching and collaborator settings."""

    country_hint: str = "SG"

    # Intake batching
    debounce_seconds: float = 2.0

    # Receipt-level heuristics
    date_window_days: int = 14
    english_ratio_threshold: float = 0.70
    expected_currencies: Dict[str, str] = field(
        default_factory=lambda: {"SG": "SGD", "TH": "THB", "MY": "MYR", "US": "USD"}
    )

    # External call budgets (seconds)
    lookup_timeout: float = 5.0
    oracle_timeout: float = 30.0
    ocr_timeout: float = 30.0

    # Local files
    fingerprint_db: str = os.path.join("data", "receipt_fingerprints.db")
    decision_log_file: str = os.path.join("data", "logs", "decisions.csv")
    merchant_templates_file: str = str(DEFAULT_TEMPLATES_FILE)

    # WordPress collaborator (disabled when wp_url is unset)
    wp_url: Optional[str] = None
    wp_user: Optional[str] = None
    wp_app_password: Optional[str] = None

    # Chat channel: Twilio account SID / auth token and sender number
    media_auth_user: Optional[str] = None
    media_auth_token: Optional[str] = None
    whatsapp_sender: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        defaults = cls()
        currencies = os.getenv("EXPECTED_CURRENCIES")

        return cls(
            country_hint=os.getenv("COUNTRY_HINT", defaults.country_hint).upper(),
            debounce_seconds=float(os.getenv("DEBOUNCE_SECONDS", "2.0")),
            date_window_days=int(os.getenv("DATE_WINDOW_DAYS", "14")),
            english_ratio_threshold=float(os.getenv("ENGLISH_RATIO_THRESHOLD", "0.70")),
            expected_currencies=(
                _parse_currency_map(currencies) if currencies else defaults.expected_currencies
            ),
            lookup_timeout=float(os.getenv("LOOKUP_TIMEOUT", "5.0")),
            oracle_timeout=float(os.getenv("ORACLE_TIMEOUT", "30.0")),
            ocr_timeout=float(os.getenv("OCR_TIMEOUT", "30.0")),
            fingerprint_db=os.getenv("RECEIPT_FINGERPRINT_DB", defaults.fingerprint_db),
            decision_log_file=os.getenv("DECISION_LOG_FILE", defaults.decision_log_file),
            merchant_templates_file=os.getenv(
                "MERCHANT_TEMPLATES_FILE", defaults.merchant_templates_file
            ),
            wp_url=os.getenv("WP_URL") or None,
            wp_user=os.getenv("WP_USER") or None,
            wp_app_password=os.getenv("WP_APP_PASSWORD") or None,
            media_auth_user=os.getenv("MEDIA_AUTH_USER") or None,
            media_auth_token=os.getenv("MEDIA_AUTH_TOKEN") or None,
            whatsapp_sender=os.getenv("WHATSAPP_FROM") or None,
        )
