"""
Redemption-slot accounting for limited campaign rules.

Global cap first: the stricter of the ledger-reported max and the rule's
limit.max. Once it is reached the slot is unavailable for everyone.
Otherwise the submitter's own redemption count is checked against
limit.per_user. Any ledger failure fails open (available, remaining=None).
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from loyaltyguard.repository.base import CampaignLedger
from loyaltyguard.schemas.campaign import RedemptionCount, RuleLimit, SlotInfo
from loyaltyguard.utils.lookups import guarded_call
from loyaltyguard.utils.numbers import coerce_int

logger = logging.getLogger(__name__)

_FAIL_OPEN = SlotInfo(available=True, remaining=None, degraded=True)


def get_redemption_slot_info(
    ledger: CampaignLedger,
    campaign_id: Any,
    submitter_id: str,
    limit: RuleLimit,
    timeout: Optional[float] = 5.0,
) -> SlotInfo:
    global_lookup = guarded_call(
        ledger.get_redemption_count,
        campaign_id,
        timeout=timeout,
        fallback=None,
        label=f"redemption count for campaign {campaign_id}",
    )
    if global_lookup.degraded or global_lookup.value is None:
        return _FAIL_OPEN

    counts = global_lookup.value
    if not isinstance(counts, RedemptionCount):
        try:
            counts = RedemptionCount.model_validate(counts)
        except ValidationError as e:
            logger.warning(f"Unreadable redemption count for campaign {campaign_id}: {e.error_count()} error(s)")
            return _FAIL_OPEN

    caps = [c for c in (counts.max, limit.max) if c and c > 0]
    cap = min(caps) if caps else 0
    remaining = max(0, cap - counts.count) if cap > 0 else None

    if cap > 0 and counts.count >= cap:
        logger.info(f"Campaign {campaign_id} global cap reached ({counts.count}/{cap})")
        return SlotInfo(available=False, remaining=0)

    user_lookup = guarded_call(
        ledger.get_user_redemption_count,
        campaign_id,
        submitter_id,
        timeout=timeout,
        fallback=None,
        label=f"user redemption count for campaign {campaign_id}",
    )
    if user_lookup.degraded or user_lookup.value is None:
        return _FAIL_OPEN

    user_count = coerce_int(user_lookup.value)
    if limit.per_user > 0 and user_count >= limit.per_user:
        return SlotInfo(available=False, remaining=remaining)

    return SlotInfo(available=True, remaining=remaining)
