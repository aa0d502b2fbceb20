"""
Points calculation for campaign `then` actions.

Modes:
    per_dollar      round(total * rate * multiplier), rounding floor|ceil|round
    flat            fixed bonus (round(rate) when bonus is unset)
    flat_per_match  bonus * number of line items matching match_keywords
    tiered          points of the highest min_spend tier the total reaches
Points of multiple award_points actions are summed; the result is never
negative.
"""

import logging
import math
from typing import Callable, Dict, Iterable, Optional

from loyaltyguard.schemas.campaign import AwardAction, PointsMode, RoundingMode
from loyaltyguard.schemas.receipt import ReceiptContext

logger = logging.getLogger(__name__)

AWARD_POINTS = "award_points"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


ROUNDERS: Dict[RoundingMode, Callable[[float], int]] = {
    RoundingMode.FLOOR: lambda v: int(math.floor(v)),
    RoundingMode.CEIL: lambda v: int(math.ceil(v)),
    RoundingMode.ROUND: _round_half_up,
}


def apply_round(value: float, method: RoundingMode = RoundingMode.FLOOR) -> int:
    # Tame float noise such as 19.99 * 100 = 1998.9999999999998 before flooring
    return ROUNDERS[method](round(value, 9))


def count_matching_items(ctx: ReceiptContext, keywords: Iterable[str]) -> int:
    """Number of line items whose name contains any keyword (case-insensitive)."""
    needles = [str(kw).lower() for kw in keywords if str(kw).strip()]
    return sum(
        1 for item in ctx.items
        if any(kw in item.name.lower() for kw in needles)
    )


def _per_dollar(action: AwardAction, ctx: ReceiptContext) -> int:
    return apply_round(ctx.total * action.rate * action.multiplier, action.rounding)


def _flat(action: AwardAction, ctx: ReceiptContext) -> int:
    return action.bonus or _round_half_up(action.rate)


def _flat_per_match(action: AwardAction, ctx: ReceiptContext) -> int:
    keywords = [kw for kw in action.match_keywords if str(kw).strip()]
    match_count = count_matching_items(ctx, keywords) if keywords else 1
    return action.bonus * match_count


def _tiered(action: AwardAction, ctx: ReceiptContext) -> int:
    for tier in sorted(action.tiers, key=lambda t: t.min_spend, reverse=True):
        if ctx.total >= tier.min_spend:
            return tier.points
    return 0


MODES: Dict[PointsMode, Callable[[AwardAction, ReceiptContext], int]] = {
    PointsMode.PER_DOLLAR: _per_dollar,
    PointsMode.FLAT: _flat,
    PointsMode.FLAT_PER_MATCH: _flat_per_match,
    PointsMode.TIERED: _tiered,
}


def points_for_action(action: AwardAction, ctx: ReceiptContext) -> int:
    """Points for one action; 0 for non-award actions and unknown modes."""
    if action.action != AWARD_POINTS:
        logger.debug(f"Skipping non-points action {action.action!r}")
        return 0

    calculate = MODES.get(action.points_mode)
    if calculate is None:
        logger.warning(f"Unknown points mode {action.mode!r} - contributes 0 points")
        return 0
    return calculate(action, ctx)


def calculate_points(actions: Optional[Iterable[AwardAction]], ctx: ReceiptContext) -> int:
    """Sum of points over all actions, floored at 0."""
    if not actions:
        return 0
    total = sum(points_for_action(action, ctx) for action in actions)
    return max(0, total)
