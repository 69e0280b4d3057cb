from __future__ import annotations

from decimal import Decimal
from typing import Tuple

from .order_model import TEXT_FIELDS

ItemKey = Tuple[str, int, Decimal, str]
OrderKey = Tuple[Tuple[ItemKey, ...], Decimal, str, str, str, str]


def project_item(item) -> ItemKey:
    return (item.item_id, int(item.quantity), item.unit_price, item.name)


def project_order(order) -> OrderKey:
    """Reduced, comparable view of a model or snapshot.

    Only the fields a user can edit take part; the store's revision marker
    changes on every write, even for identical content, so it is left out.
    Item order is significant.
    """
    items = tuple(project_item(item) for item in order.items)
    texts = tuple(getattr(order, name) for name in TEXT_FIELDS)
    return (items, order.service_charge) + texts


def snapshots_equal(a, b) -> bool:
    return project_order(a) == project_order(b)
