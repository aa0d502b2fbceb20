"""
Pydantic models for the semantic validation oracle.

The oracle is untrusted: everything it returns is validated against these
models, and anything that does not fit is replaced by the fail-safe
assessment (see build_failsafe_assessment).
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from loyaltyguard.utils.numbers import coerce_number

FAILSAFE_PATTERN = "validation unavailable"


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class MerchantAssessment(BaseModel):
    name: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    matched_template: Optional[str] = None


class ExtractedFields(BaseModel):
    currency: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    receipt_id: Optional[str] = None

    @field_validator("currency", "date", "time", "receipt_id", mode="before")
    @classmethod
    def _as_text(cls, v):
        return _stringify(v)

    @field_validator("subtotal", "tax", "total", mode="before")
    @classmethod
    def _amount(cls, v):
        return coerce_number(v)


class SemanticChecks(BaseModel):
    math_consistent: bool = False
    tax_plausible: bool = False
    formatting_plausible: bool = False
    merchant_plausible: bool = False
    suspicious_patterns: List[str] = Field(default_factory=list)

    @field_validator("suspicious_patterns", mode="before")
    @classmethod
    def _patterns(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(p) for p in v if p]


class SemanticAssessment(BaseModel):
    """
    Structured consistency/plausibility assessment of a receipt's OCR text.

    `degraded` is True when this is the fail-safe substitute rather than a
    real oracle answer; it is for the review payload only.
    """
    merchant: MerchantAssessment = Field(default_factory=MerchantAssessment)
    extracted: ExtractedFields = Field(default_factory=ExtractedFields)
    checks: SemanticChecks
    fraud_likelihood: float = Field(ge=0.0, le=1.0)
    explanation: str = ""
    degraded: bool = False

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v):
        return "" if v is None else str(v)


class ParsedItem(BaseModel):
    name: str = ""
    price: float = 0.0
    quantity: float = 1.0

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return "" if v is None else str(v)

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, v):
        number = coerce_number(v)
        return 0.0 if number is None else number

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v):
        number = coerce_number(v)
        return 1.0 if number is None else number


class ParsedReceipt(BaseModel):
    """Receipt fields extracted by the oracle in the same call as the assessment."""
    receipt_id: Optional[str] = None
    store_name: Optional[str] = None
    purchase_date: Optional[str] = None
    total_amount: Optional[str] = "0"
    currency: Optional[str] = None
    items: List[ParsedItem] = Field(default_factory=list)

    @field_validator("receipt_id", "store_name", "purchase_date", "total_amount", "currency", mode="before")
    @classmethod
    def _as_text(cls, v):
        return _stringify(v)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, v):
        if not isinstance(v, list):
            return []
        # Older parser output listed items as plain strings ("Water 15.00")
        return [{"name": item} if isinstance(item, str) else item for item in v]


def build_failsafe_assessment(reason: str = FAILSAFE_PATTERN) -> SemanticAssessment:
    """Conservative substitute used whenever the oracle cannot be trusted."""
    return SemanticAssessment(
        merchant=MerchantAssessment(),
        extracted=ExtractedFields(),
        checks=SemanticChecks(
            math_consistent=False,
            tax_plausible=False,
            formatting_plausible=False,
            merchant_plausible=False,
            suspicious_patterns=[FAILSAFE_PATTERN],
        ),
        fraud_likelihood=0.5,
        explanation=reason,
        degraded=True,
    )


def build_empty_parsed() -> ParsedReceipt:
    return ParsedReceipt(total_amount="0", items=[])
