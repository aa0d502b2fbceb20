"""
Campaign rule evaluation.

Every active campaign is reported: each rule yields one RuleSuggestion,
matched or not, and a campaign without rules yields a single placeholder
suggestion so reviewers see it exists. Rules are evaluated in descending
priority order (ties keep catalog order).

The engine only suggests points. Nothing here writes to the ledger.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from loyaltyguard.campaigns.conditions import evaluate_when
from loyaltyguard.campaigns.points import calculate_points
from loyaltyguard.campaigns.slots import get_redemption_slot_info
from loyaltyguard.errors import MissingSubmitterError
from loyaltyguard.repository.base import CampaignLedger
from loyaltyguard.schemas.campaign import (
    Campaign,
    CampaignEvaluation,
    CampaignRule,
    RuleSuggestion,
    SlotInfo,
)
from loyaltyguard.schemas.receipt import ReceiptContext
from loyaltyguard.utils.lookups import guarded_call

logger = logging.getLogger(__name__)

NO_CAMPAIGNS_REASON = "No active campaigns"
NO_RULES_LABEL = "No rules defined"


def _rule_note(rule: CampaignRule) -> str:
    for action in rule.then:
        if action.label:
            return action.label
    return rule.display_label or ""


def _coerce_campaigns(raw_campaigns: Iterable[Any]) -> List[Campaign]:
    """Validate campaign definitions, skipping any whose header is malformed."""
    campaigns = []
    for raw in raw_campaigns:
        if isinstance(raw, Campaign):
            campaigns.append(raw)
        elif isinstance(raw, dict):
            try:
                campaigns.append(Campaign.from_payload(raw))
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed campaign {raw.get('campaign_post_id')}: "
                    f"{e.error_count()} validation error(s)"
                )
        else:
            logger.warning(f"Skipping campaign definition of type {type(raw).__name__}")
    return campaigns


def _load_campaigns(ledger: CampaignLedger, timeout: Optional[float]) -> List[Campaign]:
    lookup = guarded_call(
        ledger.fetch_active_campaigns,
        timeout=timeout,
        fallback=[],
        label="active campaign fetch",
    )
    return _coerce_campaigns(lookup.value or [])


def evaluate_rule(
    campaign: Campaign,
    rule: CampaignRule,
    ctx: ReceiptContext,
    submitter_id: str,
    ledger: CampaignLedger,
    lookup_timeout: Optional[float] = 5.0,
) -> RuleSuggestion:
    """Evaluate one rule of a campaign against the receipt context."""
    context = ctx.to_context()
    matched = bool(rule.then) and evaluate_when(rule.when, context)
    points = calculate_points(rule.then, ctx) if matched else 0

    slot = SlotInfo()
    if rule.limit is not None:
        slot = get_redemption_slot_info(
            ledger,
            campaign.campaign_post_id,
            submitter_id,
            rule.limit,
            timeout=lookup_timeout,
        )

    return RuleSuggestion(
        campaign_post_id=campaign.campaign_post_id,
        campaign_title=campaign.title,
        brand_id=campaign.brand_id,
        rule_id=rule.id,
        rule_label=rule.display_label,
        suggested_points=points,
        matched=matched,
        slot_available=slot.available,
        slots_remaining=slot.remaining,
        note=_rule_note(rule),
        receipt_snapshot=ctx.snapshot(),
        slot_check_degraded=slot.degraded,
    )


def _placeholder(campaign: Campaign, ctx: ReceiptContext) -> RuleSuggestion:
    return RuleSuggestion(
        campaign_post_id=campaign.campaign_post_id,
        campaign_title=campaign.title,
        brand_id=campaign.brand_id,
        rule_id=None,
        rule_label=NO_RULES_LABEL,
        suggested_points=0,
        matched=False,
        slot_available=True,
        slots_remaining=None,
        note=NO_RULES_LABEL,
        receipt_snapshot=ctx.snapshot(),
    )


def evaluate_campaigns(
    ctx: ReceiptContext,
    submitter_id: str,
    ledger: CampaignLedger,
    lookup_timeout: Optional[float] = 5.0,
    campaigns: Optional[Iterable[Any]] = None,
) -> CampaignEvaluation:
    """
    Evaluate all active campaigns against a receipt for one submitter.

    Args:
        ctx: normalized receipt context
        submitter_id: profile id the points would be credited to
        ledger: campaign/redemption read collaborator
        lookup_timeout: seconds allowed per ledger call
        campaigns: pre-fetched campaign definitions (skips the ledger fetch)

    Returns:
        CampaignEvaluation; total_suggested_points only counts suggestions
        that are matched and have a slot available.

    Raises:
        MissingSubmitterError: if submitter_id is empty
    """
    if not submitter_id:
        raise MissingSubmitterError("campaign evaluation")

    evaluated_at = datetime.now(timezone.utc).isoformat()

    if campaigns is None:
        active = _load_campaigns(ledger, lookup_timeout)
    else:
        active = _coerce_campaigns(campaigns)

    if not active:
        logger.info("No active campaigns to evaluate")
        return CampaignEvaluation(
            matched=False,
            total_suggested_points=0,
            suggestions=[],
            campaigns_evaluated=0,
            evaluated_at=evaluated_at,
            reason=NO_CAMPAIGNS_REASON,
        )

    suggestions: List[RuleSuggestion] = []
    for campaign in active:
        if not campaign.rules:
            suggestions.append(_placeholder(campaign, ctx))
            continue

        ordered = sorted(campaign.rules, key=lambda r: r.priority, reverse=True)
        for rule in ordered:
            suggestions.append(
                evaluate_rule(campaign, rule, ctx, submitter_id, ledger, lookup_timeout)
            )

    total = sum(s.suggested_points for s in suggestions if s.matched and s.slot_available)
    matched = any(s.matched for s in suggestions)

    logger.info(
        f"Evaluated {len(active)} campaign(s), {len(suggestions)} rule(s): "
        f"matched={matched}, suggested_points={total}"
    )

    return CampaignEvaluation(
        matched=matched,
        total_suggested_points=total,
        suggestions=suggestions,
        campaigns_evaluated=len(active),
        evaluated_at=evaluated_at,
    )

