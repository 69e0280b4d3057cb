from __future__ import annotations

import asyncio
from decimal import Decimal

from pos_core.errors import OrderNotFoundError
from pos_core.store import InMemoryOrderStore
from pos_core.sync_engine import SyncPhase
from tests._stores import SETTLE_S, Recorder, make_engine, payload, seed


def test_snapshot_discarded_while_dirty():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload())

    async def scenario():
        engine = make_engine("ORD-1", store, debounce_ms=10_000)
        engine.start()
        engine.set_service_charge(5)
        before = engine.model.to_payload()
        result = engine.on_remote_snapshot(payload(service_charge=7, customerName="Ravi"))
        assert result.action == "discarded"
        assert engine.model.to_payload() == before
        engine.close()

    asyncio.run(scenario())


def test_equal_snapshot_emits_nothing():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload(items=[{"id": "x", "name": "Samosa", "price": 10, "quantity": 1}]))
    rec = Recorder()

    async def scenario():
        engine = make_engine("ORD-1", store, rec)
        engine.start()
        changes, statuses = rec.changes, list(rec.statuses)
        echoed = dict(store.get("ORD-1"), lastUpdatedAt=123456)
        result = engine.on_remote_snapshot(echoed)
        assert result.action == "unchanged"
        assert rec.changes == changes
        assert rec.statuses == statuses
        assert engine.last_revision == 123456

    asyncio.run(scenario())


def test_applied_snapshot_replaces_model_and_notifies_once():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload())
    rec = Recorder()

    async def scenario():
        engine = make_engine("ORD-1", store, rec)
        engine.start()
        result = engine.on_remote_snapshot(
            payload(items=[{"id": "x", "name": "Samosa", "price": "10", "quantity": 2}], service_charge="bad")
        )
        assert result.action == "applied"
        await asyncio.sleep(SETTLE_S)
        return engine

    engine = asyncio.run(scenario())
    assert engine.model.quantity_of("x") == 2
    assert engine.model.service_charge == Decimal(0)
    assert rec.changes == 1
    assert engine.status == "clean"
    assert len(store.writes_for("ORD-1")) == 1


def test_reentrant_edit_while_applying_never_dirties():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload())
    seen_phases = []

    async def scenario():
        engine = None

        def on_change(model):
            # A reactive view normalising a field as it renders.
            seen_phases.append(engine.phase)
            engine.apply_local_edit({"notes": model.notes.strip()})

        engine = make_engine("ORD-1", store, on_change=on_change)
        engine.start()
        engine.on_remote_snapshot(payload(notes="  table by the window "))
        await asyncio.sleep(SETTLE_S)
        return engine

    engine = asyncio.run(scenario())
    assert seen_phases == [SyncPhase.APPLYING]
    assert engine.model.notes == "table by the window"
    assert not engine.dirty
    assert engine.status == "clean"
    assert len(store.writes_for("ORD-1")) == 1


def test_absent_order_is_not_found_not_empty():
    store = InMemoryOrderStore()
    rec = Recorder()

    async def scenario():
        engine = make_engine("ORD-404", store, rec)
        engine.start()
        return engine

    engine = asyncio.run(scenario())
    assert engine.status == "not_found"
    assert engine.order_found is False
    assert isinstance(rec.errors[0], OrderNotFoundError)


def test_explicit_empty_order_is_clean():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload())
    rec = Recorder()

    async def scenario():
        engine = make_engine("ORD-1", store, rec)
        engine.start()
        return engine

    engine = asyncio.run(scenario())
    assert engine.status == "clean"
    assert engine.order_found is True
    assert engine.model.items == []
    assert rec.errors == []


def test_foreign_and_malformed_snapshots_are_ignored():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload())

    async def scenario():
        engine = make_engine("ORD-1", store)
        engine.start()
        assert engine.on_remote_snapshot(dict(payload(notes="x"), orderNumber="ORD-2")).action == "ignored"
        assert engine.on_remote_snapshot(["not", "a", "mapping"]).action == "ignored"
        return engine

    engine = asyncio.run(scenario())
    assert engine.model.notes == ""


def test_echo_of_own_write_with_fine_price_is_unchanged():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload())
    rec = Recorder()

    async def scenario():
        engine = make_engine("ORD-1", store, rec)
        engine.start()
        engine.increment_item("x", "Samosa", Decimal("10.123456789012345678"))
        await asyncio.sleep(SETTLE_S)
        assert engine.status == "clean"
        changes = rec.changes
        result = engine.on_remote_snapshot(store.get("ORD-1"))
        assert result.action == "unchanged"
        assert rec.changes == changes
        assert engine.model.get_item("x").unit_price == Decimal("10.12")
        engine.close()

    asyncio.run(scenario())
