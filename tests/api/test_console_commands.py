from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path

import pytest

from pos_api.console import Command, apply_command, load_config, parse_command, render_order
from pos_core.store import InMemoryOrderStore
from tests._stores import SETTLE_S, make_engine, payload, seed


def test_parse_command_splits_quoted_text():
    assert parse_command("  ") is None
    cmd = parse_command('notes "no onion, extra chutney"')
    assert cmd == Command(name="notes", args=["no onion, extra chutney"])
    assert parse_command("ADD x 10 Samosa").name == "add"
    with pytest.raises(ValueError):
        parse_command('name "unterminated')


def test_commands_drive_the_engine():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload())

    async def scenario():
        engine = make_engine("ORD-1", store)
        engine.start()
        for line in [
            "add x 10 Masala Samosa",
            "inc x",
            "add y 2.50 Tea",
            "dec y",
            "price x 12",
            "charge 5",
            "name Asha",
            "table T4",
        ]:
            apply_command(engine, parse_command(line))
        await asyncio.sleep(SETTLE_S)
        return engine

    engine = asyncio.run(scenario())
    model = engine.model
    assert model.get_item("x").name == "Masala Samosa"
    assert model.quantity_of("x") == 2
    assert model.quantity_of("y") == 0
    assert model.total() == Decimal(29)
    assert model.customer_name == "Asha"
    assert store.get("ORD-1")["tableNumber"] == "T4"
    assert len(store.writes_for("ORD-1")) == 2


def test_invalid_commands_raise_value_error():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload())

    async def scenario():
        engine = make_engine("ORD-1", store)
        engine.start()
        for line in ["add x", "add x abc Samosa", "inc missing", "qty x two", "fly away"]:
            with pytest.raises(ValueError):
                apply_command(engine, parse_command(line))
        assert apply_command(engine, parse_command("status")) == "status: clean"
        engine.close()

    asyncio.run(scenario())


def test_render_order_shows_lines_and_total():
    store = InMemoryOrderStore()
    seed(store, "ORD-1", payload(items=[{"id": "x", "name": "Samosa", "price": 10, "quantity": 2}], service_charge=1))

    async def scenario():
        engine = make_engine("ORD-1", store)
        engine.start()
        out = apply_command(engine, parse_command("show"))
        engine.close()
        return out

    out = asyncio.run(scenario())
    assert "2 x Samosa [x] @ 10.00 = 20.00" in out
    assert "service charge 1.00" in out
    assert out.endswith("total 21.00")


def test_load_config_reads_yaml(tmp_path: Path):
    path = tmp_path / "console.yaml"
    path.write_text("relay_url: ws://relay:9000/ws\ndebounce_ms: 300\n", encoding="utf-8")
    cfg = load_config(str(path))
    assert cfg == {"relay_url": "ws://relay:9000/ws", "debounce_ms": 300}

    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config(str(empty)) == {}
