from __future__ import annotations

from pos_core.equality import snapshots_equal
from pos_core.order_model import LocalOrderModel
from pos_core.snapshot import coerce_snapshot


def _raw(**overrides):
    raw = {
        "items": [{"id": "x", "name": "Samosa", "price": 10, "quantity": 1}],
        "serviceCharge": 0,
        "customerName": "Asha",
        "lastUpdatedAt": 1,
    }
    raw.update(overrides)
    return raw


def test_revision_marker_is_ignored():
    assert snapshots_equal(coerce_snapshot(_raw()), coerce_snapshot(_raw(lastUpdatedAt=2)))


def test_item_fields_and_scalars_are_compared():
    base = coerce_snapshot(_raw())
    assert not snapshots_equal(base, coerce_snapshot(_raw(items=[{"id": "x", "name": "Samosa", "price": 10, "quantity": 2}])))
    assert not snapshots_equal(base, coerce_snapshot(_raw(items=[{"id": "x", "name": "Samosa", "price": 11, "quantity": 1}])))
    assert not snapshots_equal(base, coerce_snapshot(_raw(serviceCharge=1)))
    assert not snapshots_equal(base, coerce_snapshot(_raw(customerName="Ravi")))


def test_item_code_is_not_compared():
    with_code = coerce_snapshot(_raw(items=[{"id": "x", "name": "Samosa", "price": 10, "quantity": 1, "itemCode": "S1"}]))
    assert snapshots_equal(coerce_snapshot(_raw()), with_code)


def test_item_order_is_significant():
    a = {"id": "a", "name": "A", "price": 1, "quantity": 1}
    b = {"id": "b", "name": "B", "price": 1, "quantity": 1}
    assert not snapshots_equal(coerce_snapshot(_raw(items=[a, b])), coerce_snapshot(_raw(items=[b, a])))


def test_model_matches_its_own_payload():
    model = LocalOrderModel(order_id="ORD-1")
    model.increment_item("x", "Samosa", "10.50")
    model.set_service_charge("2.25")
    model.set_text("notes", "no onion")

    echoed = dict(model.to_payload(), lastUpdatedAt=99, orderNumber="ORD-1")
    assert snapshots_equal(model, coerce_snapshot(echoed))
