"""Tolerant decoding of order snapshots delivered by the shared store.

Snapshots may be partially written or hand-edited, so decoding never raises:
numeric fields that are missing or non-numeric become ``0`` and text fields
become ``""``. Item lines that cannot be identified (no id) or whose quantity
coerces below 1 are dropped, since an order never holds zero-quantity lines.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Tuple

from .order_model import TEXT_FIELDS, OrderItem, to_cents

log = logging.getLogger("pos_core.snapshot")

# Keys attached by the store on every write; never part of order content.
REVISION_KEY = "lastUpdatedAt"
ORDER_NUMBER_KEY = "orderNumber"

_WIRE_TEXT_KEYS = {
    "customer_name": "customerName",
    "customer_phone_number": "customerPhoneNumber",
    "table_number": "tableNumber",
    "notes": "notes",
}


@dataclass(frozen=True)
class OrderSnapshot:
    items: Tuple[OrderItem, ...] = ()
    service_charge: Decimal = Decimal(0)
    customer_name: str = ""
    customer_phone_number: str = ""
    table_number: str = ""
    notes: str = ""
    order_number: Optional[str] = None
    revision: Optional[int] = None


def coerce_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal(0)
    if not dec.is_finite() or dec < 0:
        return Decimal(0)
    return dec


def coerce_money(value: Any) -> Decimal:
    try:
        return to_cents(coerce_decimal(value))
    except InvalidOperation:
        return Decimal(0)


def coerce_int(value: Any) -> int:
    return int(coerce_decimal(value))


def coerce_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _coerce_revision(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _raw_items(raw: Any) -> list:
    if isinstance(raw, (list, tuple)):
        return list(raw)
    if isinstance(raw, Mapping):
        # Sparse arrays can arrive keyed by index.
        def _key(k):
            try:
                return (0, int(k))
            except (TypeError, ValueError):
                return (1, str(k))

        return [raw[k] for k in sorted(raw.keys(), key=_key)]
    return []


def coerce_item(raw: Any) -> Optional[OrderItem]:
    if not isinstance(raw, Mapping):
        return None
    item_id = coerce_text(raw.get("id", raw.get("itemId")))
    if not item_id:
        return None
    quantity = coerce_int(raw.get("quantity"))
    if quantity < 1:
        return None
    code = raw.get("itemCode")
    return OrderItem(
        item_id=item_id,
        name=coerce_text(raw.get("name")),
        unit_price=coerce_money(raw.get("price", raw.get("unitPrice"))),
        quantity=quantity,
        item_code=coerce_text(code) or None,
    )


def coerce_snapshot(raw: Mapping[str, Any]) -> OrderSnapshot:
    """Decode a raw store value into an :class:`OrderSnapshot`."""
    items = []
    seen = set()
    dropped = 0
    for entry in _raw_items(raw.get("items")):
        item = coerce_item(entry)
        if item is None or item.item_id in seen:
            dropped += 1
            continue
        seen.add(item.item_id)
        items.append(item)
    if dropped:
        log.debug("Dropped %d unusable item lines from snapshot", dropped)

    texts = {name: coerce_text(raw.get(_WIRE_TEXT_KEYS[name])) for name in TEXT_FIELDS}
    order_number = raw.get(ORDER_NUMBER_KEY)
    return OrderSnapshot(
        items=tuple(items),
        service_charge=coerce_money(raw.get("serviceCharge")),
        order_number=coerce_text(order_number) if order_number is not None else None,
        revision=_coerce_revision(raw.get(REVISION_KEY)),
        **texts,
    )
