"""
Campaign rule models.

Campaign definitions come from an external source and are loosely typed:
numbers may arrive as strings, ids as ints, operator and mode names may be
legacy values. Operators, points modes and rounding modes are closed enums;
anything unrecognised maps to an UNKNOWN variant that the evaluator treats
as a logged no-op.
"""

import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from loyaltyguard.utils.numbers import coerce_int, coerce_number

logger = logging.getLogger(__name__)


class Operator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    CONTAINS_ANY = "contains_any"
    CONTAINS_ALL = "contains_all"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "Operator":
        try:
            op = cls(str(raw).strip().lower())
        except ValueError:
            return cls.UNKNOWN
        return op


class PointsMode(str, Enum):
    PER_DOLLAR = "per_dollar"
    FLAT = "flat"
    FLAT_PER_MATCH = "flat_per_match"
    TIERED = "tiered"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "PointsMode":
        if raw is None or raw == "":
            return cls.PER_DOLLAR
        try:
            mode = cls(str(raw).strip().lower())
        except ValueError:
            return cls.UNKNOWN
        return mode


class RoundingMode(str, Enum):
    FLOOR = "floor"
    CEIL = "ceil"
    ROUND = "round"

    @classmethod
    def parse(cls, raw: Any) -> "RoundingMode":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.FLOOR


# ---------------------------------------------------------------------------
# Conditions (`when`)
# ---------------------------------------------------------------------------

class Condition(BaseModel):
    """Leaf condition: {field, op, value}. `op` is kept raw for logging."""
    field: str
    op: str = ""
    value: Any = None

    @property
    def operator(self) -> Operator:
        return Operator.parse(self.op)


class ConditionGroup(BaseModel):
    """
    Condition tree node: {all: [...]} (conjunction) or {any: [...]}
    (disjunction). Entries are leaf conditions or nested groups.
    """
    model_config = ConfigDict(populate_by_name=True)

    all_of: Optional[List[Union["ConditionGroup", Condition]]] = Field(None, alias="all")
    any_of: Optional[List[Union["ConditionGroup", Condition]]] = Field(None, alias="any")

    @field_validator("all_of", "any_of", mode="before")
    @classmethod
    def _entries(cls, v):
        if v is None:
            return None
        if not isinstance(v, list):
            v = [v]
        entries = []
        for entry in v:
            if isinstance(entry, (ConditionGroup, Condition)):
                entries.append(entry)
            elif isinstance(entry, dict) and ("all" in entry or "any" in entry):
                entries.append(ConditionGroup.model_validate(entry))
            else:
                entries.append(Condition.model_validate(entry))
        return entries


# ---------------------------------------------------------------------------
# Actions (`then`) and limits
# ---------------------------------------------------------------------------

class Tier(BaseModel):
    min_spend: float = 0.0
    points: int = 0

    @field_validator("min_spend", mode="before")
    @classmethod
    def _min_spend(cls, v):
        number = coerce_number(v)
        return 0.0 if number is None else number

    @field_validator("points", mode="before")
    @classmethod
    def _points(cls, v):
        return coerce_int(v)


class AwardAction(BaseModel):
    """One `then` entry. Only action == "award_points" contributes points."""
    action: str = "award_points"
    mode: Optional[str] = None
    rate: float = 1.0
    multiplier: float = 1.0
    bonus: int = 0
    round: Optional[str] = None
    tiers: List[Tier] = Field(default_factory=list)
    match_keywords: List[str] = Field(default_factory=list)
    label: Optional[str] = None

    @field_validator("rate", "multiplier", mode="before")
    @classmethod
    def _factor(cls, v):
        number = coerce_number(v)
        return 1.0 if number is None else number

    @field_validator("bonus", mode="before")
    @classmethod
    def _bonus(cls, v):
        return coerce_int(v)

    @field_validator("tiers", "match_keywords", mode="before")
    @classmethod
    def _list(cls, v):
        return v if isinstance(v, list) else []

    @property
    def points_mode(self) -> PointsMode:
        return PointsMode.parse(self.mode)

    @property
    def rounding(self) -> RoundingMode:
        return RoundingMode.parse(self.round or "floor")


class RuleLimit(BaseModel):
    """Redemption limit: global `max` and per-submitter `per_user` (default 1)."""
    max: Optional[int] = None
    per_user: int = Field(1, validation_alias=AliasChoices("per_user", "perUser"))

    @field_validator("max", mode="before")
    @classmethod
    def _max(cls, v):
        number = coerce_number(v)
        return None if number is None else int(number)

    @field_validator("per_user", mode="before")
    @classmethod
    def _per_user(cls, v):
        return coerce_int(v, default=1)


class CampaignRule(BaseModel):
    id: Optional[str] = None
    label: Optional[str] = None
    priority: int = 0
    when: Optional[ConditionGroup] = None
    then: List[AwardAction] = Field(default_factory=list)
    limit: Optional[RuleLimit] = None

    @field_validator("id", "label", mode="before")
    @classmethod
    def _as_text(cls, v):
        return None if v is None else str(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        return coerce_int(v)

    @field_validator("then", mode="before")
    @classmethod
    def _then(cls, v):
        if v is None:
            return []
        return v if isinstance(v, list) else [v]

    @property
    def display_label(self) -> Optional[str]:
        return self.label or self.id


class Campaign(BaseModel):
    campaign_post_id: Optional[Union[int, str]] = None
    title: str = ""
    brand_id: Optional[Union[int, str]] = None
    rules: List[CampaignRule] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, v):
        return "" if v is None else str(v)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Campaign":
        """
        Build a campaign from a raw definition.

        Rules may be given as a list or wrapped as {"rules": [...]}. A rule
        that fails validation is kept as an empty placeholder (no actions)
        so the campaign is still reported for review.
        """
        raw_rules = payload.get("rules")
        if isinstance(raw_rules, dict):
            raw_rules = raw_rules.get("rules")
        if not isinstance(raw_rules, list):
            raw_rules = []

        rules: List[CampaignRule] = []
        for index, raw in enumerate(raw_rules):
            try:
                rules.append(CampaignRule.model_validate(raw))
            except ValidationError as e:
                rule_id = raw.get("id") if isinstance(raw, dict) else None
                logger.warning(
                    f"Malformed rule {rule_id or index} in campaign "
                    f"{payload.get('campaign_post_id')}: {e.error_count()} validation error(s)"
                )
                rules.append(CampaignRule(id=None if rule_id is None else str(rule_id), label="Invalid rule"))

        header = {k: v for k, v in payload.items() if k != "rules"}
        return cls.model_validate({**header, "rules": rules})


class RedemptionCount(BaseModel):
    """Global redemption state for one campaign as reported by the ledger."""
    max: Optional[int] = None
    count: int = 0

    @field_validator("max", mode="before")
    @classmethod
    def _max(cls, v):
        number = coerce_number(v)
        return None if number is None else int(number)

    @field_validator("count", mode="before")
    @classmethod
    def _count(cls, v):
        return coerce_int(v)


# ---------------------------------------------------------------------------
# Evaluation outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SlotInfo:
    """
    Redemption slot availability. `degraded` marks a fail-open answer given
    because a ledger lookup failed.
    """
    available: bool = True
    remaining: Optional[int] = None
    degraded: bool = False


@dataclass(frozen=True)
class RuleSuggestion:
    """Evaluation outcome for one (campaign, rule) pair."""
    campaign_post_id: Optional[Union[int, str]]
    campaign_title: str
    brand_id: Optional[Union[int, str]]
    rule_id: Optional[str]
    rule_label: Optional[str]
    suggested_points: int
    matched: bool
    slot_available: bool
    slots_remaining: Optional[int]
    note: str
    receipt_snapshot: Dict[str, Any] = field(default_factory=dict)
    slot_check_degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CampaignEvaluation:
    matched: bool
    total_suggested_points: int
    suggestions: List[RuleSuggestion]
    campaigns_evaluated: int
    evaluated_at: str
    reason: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Suggestion payload handed to the persistence collaborator."""
        if not self.campaigns_evaluated:
            return {"matched": False, "suggestions": [], "reason": self.reason or "No active campaigns"}
        return {
            "matched": self.matched,
            "total_suggested_points": self.total_suggested_points,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "evaluated_at": self.evaluated_at,
            "campaigns_evaluated": self.campaigns_evaluated,
        }


ConditionGroup.model_rebuild()
