from loyaltyguard.campaigns.context import build_receipt_context, resolve_field
from loyaltyguard.campaigns.engine import evaluate_campaigns
from loyaltyguard.campaigns.points import calculate_points

__all__ = ["build_receipt_context", "resolve_field", "evaluate_campaigns", "calculate_points"]
