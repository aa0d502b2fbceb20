"""
`when` condition evaluation for campaign rules.

Supports {all: [...]} / {any: [...]} trees (nestable) over leaf conditions
{field, op, value}. Operators:
    eq, neq                        case-insensitive string equality
    gt, gte, lt, lte               numeric, best-effort coercion
    contains, contains_any,        case-insensitive substring tests
    contains_all
All operators broadcast over list-valued fields (receipt.items.<prop>).
Unknown operators evaluate to False with a warning; nothing here raises.
"""

import logging
import operator as _op
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from loyaltyguard.campaigns.context import resolve_field
from loyaltyguard.schemas.campaign import Condition, ConditionGroup, Operator
from loyaltyguard.utils.numbers import coerce_number

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip().lower()


def _keywords(value: Any) -> List[str]:
    values = value if isinstance(value, (list, tuple)) else [value]
    return [_as_text(v) for v in values if _as_text(v)]


def _elements(actual: Any) -> List[Any]:
    return list(actual) if isinstance(actual, (list, tuple)) else [actual]


def _equals(actual: Any, value: Any) -> bool:
    expected = _as_text(value)
    return any(_as_text(el) == expected for el in _elements(actual))


def _not_equals(actual: Any, value: Any) -> bool:
    return not _equals(actual, value)


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, value: Any) -> bool:
        right = coerce_number(value)
        if right is None:
            return False
        for el in _elements(actual):
            left = coerce_number(el)
            if left is not None and compare(left, right):
                return True
        return False
    return check


def _contains(actual: Any, value: Any) -> bool:
    needle = _as_text(value)
    return any(needle in _as_text(el) for el in _elements(actual))


def _contains_any(actual: Any, value: Any) -> bool:
    keywords = _keywords(value)
    return any(kw in _as_text(el) for el in _elements(actual) for kw in keywords)


def _contains_all(actual: Any, value: Any) -> bool:
    keywords = _keywords(value)
    if not keywords:
        return False
    elements = [_as_text(el) for el in _elements(actual)]
    return all(any(kw in el for el in elements) for kw in keywords)


OPERATORS: Dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQ: _equals,
    Operator.NEQ: _not_equals,
    Operator.GT: _numeric(_op.gt),
    Operator.GTE: _numeric(_op.ge),
    Operator.LT: _numeric(_op.lt),
    Operator.LTE: _numeric(_op.le),
    Operator.CONTAINS: _contains,
    Operator.CONTAINS_ANY: _contains_any,
    Operator.CONTAINS_ALL: _contains_all,
}


def evaluate_condition(cond: Condition, ctx: Mapping[str, Any]) -> bool:
    """Evaluate a single leaf condition against the context dict."""
    operator = cond.operator
    check = OPERATORS.get(operator)
    if check is None:
        logger.warning(f"Unknown condition operator {cond.op!r} on field {cond.field!r} - treated as false")
        return False

    actual = resolve_field(cond.field, ctx)
    return check(actual, cond.value)


def evaluate_when(
    when: Optional[Union[ConditionGroup, Condition]],
    ctx: Mapping[str, Any],
) -> bool:
    """
    Evaluate a condition tree. No `when` (or a group with neither `all` nor
    `any`) is satisfied.
    """
    if when is None:
        return True
    if isinstance(when, Condition):
        return evaluate_condition(when, ctx)
    if when.all_of is not None:
        return all(evaluate_when(entry, ctx) for entry in when.all_of)
    if when.any_of is not None:
        return any(evaluate_when(entry, ctx) for entry in when.any_of)
    return True
