"""Terminal editing surface for one shared order.

Run two of these against the same relay and order id to reproduce the
primary editor / shared link pair:

    python -m pos_api.console --order ORD-K3X9Q2A --surface primary
    python -m pos_api.console --order ORD-K3X9Q2A --surface shared
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import sys
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import yaml

from pos_api.logging_config import setup_surface_logging
from pos_core.errors import OrderSyncError, StoreWriteError
from pos_core.order_model import LocalOrderModel, generate_order_number, parse_service_charge
from pos_core.settings import SYNC_DEBOUNCE_MS, SYNC_WRITE_TIMEOUT_S, WS_RELAY_PORT
from pos_core.sync_engine import SyncEngine
from ws_clients.order_store_client import WebSocketOrderStore

log = logging.getLogger("pos_api.console")

TEXT_COMMANDS = {
    "name": "customer_name",
    "phone": "customer_phone_number",
    "table": "table_number",
    "notes": "notes",
}

HELP = """commands:
  add <item_id> <price> <name...>   add one unit (new line or +1)
  inc <item_id> | dec <item_id>     +1 / -1 (0 removes the line)
  qty <item_id> <n>                 set quantity
  price <item_id> <price>           override unit price
  charge <amount>                   service charge
  name|phone|table|notes <text>     customer / order text fields
  publish                           write now and print the share path
  show | status | help | quit"""


@dataclass
class Command:
    name: str
    args: List[str]


def load_config(path: str) -> dict:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def parse_command(line: str) -> Optional[Command]:
    try:
        parts = shlex.split(line)
    except ValueError as exc:
        raise ValueError(f"cannot parse input: {exc}") from exc
    if not parts:
        return None
    return Command(name=parts[0].lower(), args=parts[1:])


def _need(cmd: Command, n: int, usage: str) -> None:
    if len(cmd.args) < n:
        raise ValueError(f"usage: {usage}")


def _price(raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"invalid price {raw!r}") from None
    if not value.is_finite() or value < 0:
        raise ValueError(f"invalid price {raw!r}")
    return value


def render_order(model: LocalOrderModel) -> str:
    lines = [f"order {model.order_id}"]
    if not model.items:
        lines.append("  (no items)")
    for item in model.items:
        line_total = item.unit_price * item.quantity
        lines.append(f"  {item.quantity:>3} x {item.name} [{item.item_id}] @ {item.unit_price:.2f} = {line_total:.2f}")
    lines.append(f"  service charge {model.service_charge:.2f}")
    for label, field_name in TEXT_COMMANDS.items():
        value = getattr(model, field_name)
        if value:
            lines.append(f"  {label}: {value}")
    lines.append(f"  total {model.total():.2f}")
    return "\n".join(lines)


def apply_command(engine: SyncEngine, cmd: Command) -> Optional[str]:
    """Apply a non-async command to the engine; returns text to print."""
    name = cmd.name
    if name == "add":
        _need(cmd, 3, "add <item_id> <price> <name...>")
        engine.increment_item(cmd.args[0], " ".join(cmd.args[2:]), _price(cmd.args[1]))
        return None
    if name == "inc":
        _need(cmd, 1, "inc <item_id>")
        item = engine.model.get_item(cmd.args[0])
        if item is None:
            raise ValueError(f"no item {cmd.args[0]!r} in order; use add")
        engine.increment_item(item.item_id, item.name, item.unit_price, item.item_code)
        return None
    if name == "dec":
        _need(cmd, 1, "dec <item_id>")
        engine.decrement_item(cmd.args[0])
        return None
    if name == "qty":
        _need(cmd, 2, "qty <item_id> <n>")
        try:
            quantity = int(cmd.args[1])
        except ValueError:
            raise ValueError(f"invalid quantity {cmd.args[1]!r}") from None
        engine.set_quantity(cmd.args[0], quantity)
        return None
    if name == "price":
        _need(cmd, 2, "price <item_id> <price>")
        engine.set_unit_price(cmd.args[0], _price(cmd.args[1]))
        return None
    if name == "charge":
        engine.set_service_charge(parse_service_charge(" ".join(cmd.args)))
        return None
    if name in TEXT_COMMANDS:
        engine.set_text(TEXT_COMMANDS[name], " ".join(cmd.args))
        return None
    if name == "show":
        return render_order(engine.model)
    if name == "status":
        return f"status: {engine.status}"
    if name == "help":
        return HELP
    raise ValueError(f"unknown command {name!r} (try help)")


async def _read_line() -> str:
    return await asyncio.get_running_loop().run_in_executor(None, sys.stdin.readline)


async def run_console(order_id: str, relay_url: str, debounce_ms: int, write_timeout_s: float) -> None:
    store = WebSocketOrderStore(relay_url)

    def on_error(err: OrderSyncError) -> None:
        print(f"! {err}")

    engine = SyncEngine(
        order_id,
        store,
        debounce_ms=debounce_ms,
        write_timeout_s=write_timeout_s,
        on_status=lambda status: print(f"[{status}]"),
        on_change=lambda model: print(render_order(model)),
        on_error=on_error,
    )
    engine.start()
    print(f"editing {order_id}; type help for commands")
    try:
        while True:
            line = await _read_line()
            if not line:
                break
            try:
                cmd = parse_command(line)
                if cmd is None:
                    continue
                if cmd.name == "quit":
                    break
                if cmd.name == "publish":
                    print(f"share path: {await engine.publish()}")
                    continue
                out = apply_command(engine, cmd)
            except StoreWriteError as exc:
                print(f"! {exc}")
                continue
            except ValueError as exc:
                print(f"? {exc}")
                continue
            if out:
                print(out)
    finally:
        engine.close()
        store.close()
        log.info("Console session ended order=%s", order_id)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Edit a shared order from the terminal.")
    parser.add_argument("--order", help="order id to edit (default: a new one)")
    parser.add_argument("--surface", default="primary", help="surface name used for log files")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--relay-url", default=None)
    args = parser.parse_args(argv)

    cfg = load_config(args.config) if args.config else {}
    order_id = args.order or generate_order_number()
    relay_url = args.relay_url or cfg.get("relay_url") or f"ws://localhost:{WS_RELAY_PORT}/ws"
    debounce_ms = int(cfg.get("debounce_ms", SYNC_DEBOUNCE_MS))
    write_timeout_s = float(cfg.get("write_timeout_s", SYNC_WRITE_TIMEOUT_S))

    log_path = setup_surface_logging(
        order_id=order_id,
        surface=args.surface,
        level=str(cfg.get("log_level", "INFO")),
        base_dir=cfg.get("log_dir", "logs"),
    )
    print(f"logging to {log_path}")
    asyncio.run(run_console(order_id, relay_url, debounce_ms, write_timeout_s))


if __name__ == "__main__":
    main()
