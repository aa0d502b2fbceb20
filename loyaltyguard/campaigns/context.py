"""
Receipt context construction and dot-path field resolution for campaign rules.
"""

from typing import Any, Dict, Mapping, Optional, Union

from loyaltyguard.schemas.receipt import ReceiptContext, ReceiptItem
from loyaltyguard.schemas.semantic import ParsedReceipt
from loyaltyguard.utils.numbers import coerce_number

DEFAULT_CURRENCY = "SGD"


def build_receipt_context(
    parsed: Union[ParsedReceipt, Mapping[str, Any], None],
    default_currency: str = DEFAULT_CURRENCY,
) -> ReceiptContext:
    """
    Normalize parsed receipt fields into a ReceiptContext.

    - store_name lowercased ("" when missing)
    - total coerced to float (0.0 when missing or unparseable)
    - currency uppercased (default_currency when missing)
    - items kept only when given as a list
    """
    if parsed is None:
        data: Dict[str, Any] = {}
    elif isinstance(parsed, ParsedReceipt):
        data = parsed.model_dump()
    else:
        data = dict(parsed)

    total = coerce_number(data.get("total_amount"))

    items = []
    raw_items = data.get("items")
    if isinstance(raw_items, list):
        for raw in raw_items:
            if isinstance(raw, str):
                items.append(ReceiptItem(name=raw))
                continue
            if not isinstance(raw, Mapping):
                continue
            price = coerce_number(raw.get("price"))
            quantity = coerce_number(raw.get("quantity"))
            items.append(ReceiptItem(
                name=str(raw.get("name") or ""),
                price=price if price is not None else 0.0,
                quantity=quantity if quantity is not None else 1.0,
            ))

    return ReceiptContext(
        store_name=str(data.get("store_name") or "").lower(),
        purchase_date=str(data.get("purchase_date") or ""),
        total=total if total is not None else 0.0,
        currency=str(data.get("currency") or default_currency).upper(),
        items=tuple(items),
    )


def resolve_field(field: str, ctx: Mapping[str, Any]) -> Optional[Any]:
    """
    Resolve a dot-notation path against the context dict.

    receipt.store_name, receipt.total, receipt.currency, receipt.purchase_date
    resolve to scalars. receipt.items.<prop> resolves to the list of that
    property across all items (missing properties become "").
    Unknown paths resolve to None.
    """
    parts = [p for p in str(field or "").split(".") if p]
    if not parts:
        return None

    if len(parts) >= 3 and parts[0] == "receipt" and parts[1] == "items":
        prop = parts[2]
        items = (ctx.get("receipt") or {}).get("items") or []
        return [
            (item.get(prop) if item.get(prop) is not None else "")
            for item in items
            if isinstance(item, Mapping)
        ]

    value: Any = ctx
    for part in parts:
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
        if value is None:
            return None
    return value
