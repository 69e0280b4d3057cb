from __future__ import annotations

import random
import string
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

TEXT_FIELDS = ("customer_name", "customer_phone_number", "table_number", "notes")

_ORDER_NUMBER_ALPHABET = string.digits + string.ascii_uppercase
_ORDER_NUMBER_LEN = 7

# Money travels as a JSON number; two places survive the float round trip.
CENTS = Decimal("0.01")


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _non_negative(value, what: str) -> Decimal:
    try:
        dec = _to_decimal(value)
        if not dec.is_finite() or dec < 0:
            raise ValueError(f"{what} must be a non-negative number (got {value!r})")
        return to_cents(dec)
    except InvalidOperation:
        raise ValueError(f"{what} must be a number (got {value!r})") from None


def generate_order_number() -> str:
    """Return a fresh order identifier such as ``ORD-K3X9Q2A``."""
    suffix = "".join(random.choice(_ORDER_NUMBER_ALPHABET) for _ in range(_ORDER_NUMBER_LEN))
    return f"ORD-{suffix}"


def parse_service_charge(text: str) -> Decimal:
    """Parse free-form service charge input; blank, invalid or negative input becomes 0."""
    raw = (text or "").strip()
    if not raw:
        return Decimal(0)
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return Decimal(0)
    if not value.is_finite() or value < 0:
        return Decimal(0)
    try:
        return to_cents(value)
    except InvalidOperation:
        return Decimal(0)


@dataclass(frozen=True)
class OrderItem:
    """One line of a shared order."""

    item_id: str
    name: str
    unit_price: Decimal
    quantity: int = 1
    item_code: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.item_id,
            "name": self.name,
            "price": float(self.unit_price),
            "quantity": int(self.quantity),
        }
        if self.item_code:
            payload["itemCode"] = self.item_code
        return payload


@dataclass
class LocalOrderModel:
    """In-memory editable copy of one order on a single client surface.

    Every mutator returns ``True`` when the model actually changed, so callers
    can tell a real edit from a no-op (e.g. decrementing an absent item).
    """

    order_id: str
    items: List[OrderItem] = field(default_factory=list)
    service_charge: Decimal = Decimal(0)
    customer_name: str = ""
    customer_phone_number: str = ""
    table_number: str = ""
    notes: str = ""

    def __post_init__(self) -> None:
        if not self.order_id:
            raise ValueError("order_id is required")
        self.service_charge = _non_negative(self.service_charge, "service_charge")

    # -- lookups -----------------------------------------------------------

    def _index_of(self, item_id: str) -> int:
        for idx, item in enumerate(self.items):
            if item.item_id == item_id:
                return idx
        return -1

    def get_item(self, item_id: str) -> Optional[OrderItem]:
        idx = self._index_of(item_id)
        return self.items[idx] if idx >= 0 else None

    def quantity_of(self, item_id: str) -> int:
        item = self.get_item(item_id)
        return item.quantity if item is not None else 0

    def total(self) -> Decimal:
        items_total = sum((item.unit_price * item.quantity for item in self.items), Decimal(0))
        return items_total + self.service_charge

    # -- item mutators -----------------------------------------------------

    def increment_item(self, item_id: str, name: str, unit_price, item_code: Optional[str] = None) -> bool:
        idx = self._index_of(item_id)
        if idx >= 0:
            current = self.items[idx]
            self.items[idx] = replace(current, quantity=current.quantity + 1)
            return True
        price = _non_negative(unit_price, "unit_price")
        self.items.append(OrderItem(item_id=item_id, name=name, unit_price=price, quantity=1, item_code=item_code))
        return True

    def decrement_item(self, item_id: str) -> bool:
        idx = self._index_of(item_id)
        if idx < 0:
            return False
        current = self.items[idx]
        if current.quantity <= 1:
            del self.items[idx]
        else:
            self.items[idx] = replace(current, quantity=current.quantity - 1)
        return True

    def set_quantity(self, item_id: str, quantity: int) -> bool:
        """Set an absolute quantity; 0 removes the line."""
        quantity = int(quantity)
        if quantity < 0:
            raise ValueError(f"quantity must be >= 0 (got {quantity})")
        idx = self._index_of(item_id)
        if idx < 0:
            return False
        current = self.items[idx]
        if quantity == 0:
            del self.items[idx]
            return True
        if current.quantity == quantity:
            return False
        self.items[idx] = replace(current, quantity=quantity)
        return True

    def set_unit_price(self, item_id: str, unit_price) -> bool:
        price = _non_negative(unit_price, "unit_price")
        idx = self._index_of(item_id)
        if idx < 0:
            return False
        current = self.items[idx]
        if current.unit_price == price:
            return False
        self.items[idx] = replace(current, unit_price=price)
        return True

    def remove_item(self, item_id: str) -> bool:
        return self.set_quantity(item_id, 0)

    # -- scalar mutators ---------------------------------------------------

    def set_service_charge(self, value) -> bool:
        charge = _non_negative(value, "service_charge")
        if charge == self.service_charge:
            return False
        self.service_charge = charge
        return True

    def set_text(self, field_name: str, value: Optional[str]) -> bool:
        if field_name not in TEXT_FIELDS:
            raise ValueError(f"unknown text field {field_name!r}")
        text = "" if value is None else str(value)
        if getattr(self, field_name) == text:
            return False
        setattr(self, field_name, text)
        return True

    def update_fields(self, **patch) -> bool:
        """Apply a patch of scalar fields (service_charge and the text fields)."""
        changed = False
        for key, value in patch.items():
            if key == "service_charge":
                changed = self.set_service_charge(value) or changed
            elif key in TEXT_FIELDS:
                changed = self.set_text(key, value) or changed
            elif key == "items":
                changed = self.replace_items(value) or changed
            else:
                raise ValueError(f"field {key!r} cannot be patched")
        return changed

    def replace_items(self, items) -> bool:
        new_items = list(items)
        seen = set()
        for item in new_items:
            if item.item_id in seen:
                raise ValueError(f"duplicate item_id {item.item_id!r}")
            if item.quantity < 1:
                raise ValueError(f"quantity must be >= 1 for {item.item_id!r}")
            seen.add(item.item_id)
        if new_items == self.items:
            return False
        self.items = new_items
        return True

    # -- snapshots ---------------------------------------------------------

    def replace_from(self, snapshot) -> None:
        """Overwrite every editable field from a coerced remote snapshot."""
        self.items = list(snapshot.items)
        self.service_charge = snapshot.service_charge
        for name in TEXT_FIELDS:
            setattr(self, name, getattr(snapshot, name))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "items": [item.to_payload() for item in self.items],
            "serviceCharge": float(self.service_charge),
            "customerName": self.customer_name,
            "customerPhoneNumber": self.customer_phone_number,
            "tableNumber": self.table_number,
            "notes": self.notes,
        }
