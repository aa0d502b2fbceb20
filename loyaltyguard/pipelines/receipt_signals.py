"""
Receipt-level heuristics computed from OCR text and parsed fields.

- non_english:       share of Latin-script letters below the threshold
- country_mismatch:  receipt currency differs from the hint country's currency
- date_out_of_range: purchase date in the future or older than the window
"""

import logging
import re
import unicodedata
from datetime import date, datetime
from typing import Dict, Optional

from loyaltyguard.schemas.receipt import ReceiptFraudSignals
from loyaltyguard.schemas.semantic import ParsedReceipt, SemanticAssessment

logger = logging.getLogger(__name__)

MIN_LETTERS_FOR_LANGUAGE = 20
UNREADABLE_DATE_FLAG = "Purchase date could not be read"

DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%d/%m/%y",
)


def parse_receipt_date(date_str: Optional[str]) -> Optional[date]:
    """Parse a receipt date in one of the common formats; None if unreadable."""
    if not date_str:
        return None
    d = str(date_str).strip()
    # Drop a trailing time component ("2024-05-01 13:45", "2024-05-01T13:45:00")
    d = re.split(r"[T ]\d{1,2}:\d{2}", d)[0].strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(d, fmt).date()
        except ValueError:
            continue
    return None


def latin_ratio(text: str) -> Optional[float]:
    """Share of alphabetic characters that are Latin script, None if too few letters."""
    letters = [ch for ch in text or "" if ch.isalpha()]
    if len(letters) < MIN_LETTERS_FOR_LANGUAGE:
        return None
    latin = sum(1 for ch in letters if "LATIN" in unicodedata.name(ch, ""))
    return latin / len(letters)


def is_date_out_of_range(purchase_date: date, today: date, window_days: int) -> bool:
    age = (today - purchase_date).days
    return age < 0 or age > window_days


def compute_receipt_signals(
    ocr_text: str,
    parsed: ParsedReceipt,
    assessment: Optional[SemanticAssessment],
    country_hint: Optional[str],
    expected_currencies: Dict[str, str],
    date_window_days: int = 14,
    english_ratio_threshold: float = 0.70,
    today: Optional[date] = None,
) -> ReceiptFraudSignals:
    """
    Compute receipt-level flags for the fraud score.

    Args:
        ocr_text: merged OCR text
        parsed: receipt fields from the oracle (may be the empty shape)
        assessment: semantic assessment; its extracted fields back-fill
            currency and date when the parsed section lacks them
        country_hint: expected ISO country
        expected_currencies: country -> currency map
        date_window_days: allowed receipt age in days
        english_ratio_threshold: minimum Latin letter share
        today: reference date (defaults to the current date)
    """
    today = today or date.today()
    hint = (country_hint or "").upper() or None
    signals = ReceiptFraudSignals(country_hint=hint)

    ratio = latin_ratio(ocr_text)
    if ratio is not None and ratio < english_ratio_threshold:
        signals.non_english = True
        logger.debug(f"Latin letter ratio {ratio:.2f} below {english_ratio_threshold}")

    extracted = assessment.extracted if assessment is not None and not assessment.degraded else None

    currency = parsed.currency or (extracted.currency if extracted else None)
    expected = expected_currencies.get(hint) if hint else None
    if currency and expected and currency.strip().upper() != expected:
        signals.country_mismatch = True
        logger.debug(f"Receipt currency {currency} does not match {hint} ({expected})")

    raw_date = parsed.purchase_date or (extracted.date if extracted else None)
    purchase_date = parse_receipt_date(raw_date)
    if purchase_date is None:
        signals.red_flags.append(UNREADABLE_DATE_FLAG)
    elif is_date_out_of_range(purchase_date, today, date_window_days):
        signals.date_out_of_range = True
        logger.debug(f"Purchase date {purchase_date} outside {date_window_days}-day window")

    return signals
