"""
Merchant template catalog and matcher.

Usage:
    from loyaltyguard.pipelines.templates import match_merchant_template
    result = match_merchant_template(ocr_text, country_hint="TH")
"""

from .matcher import TemplateMatchResult, match_merchant_template
from .registry import MerchantTemplate, TemplateRegistry, get_registry, reset_registry

__all__ = [
    "MerchantTemplate",
    "TemplateMatchResult",
    "TemplateRegistry",
    "get_registry",
    "match_merchant_template",
    "reset_registry",
]
