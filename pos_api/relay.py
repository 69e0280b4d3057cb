from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import re
from urllib.parse import parse_qsl
from typing import Any, Dict, Optional

import websockets

from pos_api.logging_config import setup_logging
from pos_api.protocols import (
    MSG_ACK,
    MSG_ERROR,
    MSG_SNAPSHOT,
    MSG_STATUS,
    MSG_WRITE,
    decode_message,
    encode_message,
    make_message,
    now_ms,
)
from pos_core.settings import WS_RELAY_HOST, WS_RELAY_PORT
from pos_core.store import InMemoryOrderStore, RemoteOrderStore

log = logging.getLogger("pos_api.relay")

_ORDER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _parse_query(path: str) -> Dict[str, str]:
    if "?" not in path:
        return {}
    _, query = path.split("?", 1)
    items = parse_qsl(query, keep_blank_values=True)
    return {k: v for k, v in items if k}


def _validate_order_id(order_id: str) -> str:
    order_id = order_id.strip()
    if not _ORDER_ID_RE.match(order_id):
        raise ValueError(f"invalid order id {order_id!r}")
    return order_id


async def _send_json(ws: Any, payload: Dict[str, Any]) -> None:
    await ws.send(encode_message(payload))


async def _send_status(ws: Any, order_id: str, message: str) -> None:
    await _send_json(ws, make_message(MSG_STATUS, order_id, now_ms(), {"message": message}))


async def _send_error(ws: Any, order_id: str, message: str, request_id: Optional[str] = None) -> None:
    await _send_json(ws, make_message(MSG_ERROR, order_id, now_ms(), {"message": message}, request_id=request_id))


async def _forward_snapshots(ws: Any, order_id: str, queue: asyncio.Queue) -> None:
    while True:
        value = await queue.get()
        await _send_json(ws, make_message(MSG_SNAPSHOT, order_id, now_ms(), value))


async def _handle_client_message(ws: Any, store: RemoteOrderStore, order_id: str, raw: str | bytes) -> None:
    msg = decode_message(raw)
    if msg is None:
        await _send_error(ws, order_id, "malformed message")
        return
    request_id = msg.get("request_id")
    if msg["type"] != MSG_WRITE:
        await _send_error(ws, order_id, f"unsupported message type {msg['type']!r}", request_id)
        return
    data = msg.get("data")
    if not isinstance(data, dict):
        await _send_error(ws, order_id, "write payload must be an object", request_id)
        return
    try:
        await store.write(order_id, data)
    except Exception as exc:
        log.exception("Store write failed order=%s", order_id)
        await _send_error(ws, order_id, f"write failed: {exc}", request_id)
        return
    await _send_json(ws, make_message(MSG_ACK, order_id, now_ms(), None, request_id=request_id))


def _get_path(ws: Any) -> str:
    req = getattr(ws, "request", None)
    if req is not None and hasattr(req, "path"):
        return req.path
    return getattr(ws, "path", "")


async def _handler(ws: Any, store: RemoteOrderStore) -> None:
    params = _parse_query(_get_path(ws))
    raw_order = params.get("order", "")
    if not raw_order:
        await _send_status(ws, "", "order is required")
        return
    try:
        order_id = _validate_order_id(raw_order)
    except ValueError as exc:
        await _send_status(ws, "", f"invalid params: {exc}")
        return

    log.info("Relay client connected order=%s", order_id)
    await _send_status(ws, order_id, "connected")

    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = store.subscribe(order_id, queue.put_nowait)
    sender = asyncio.create_task(_forward_snapshots(ws, order_id, queue))
    try:
        async for raw in ws:
            await _handle_client_message(ws, store, order_id, raw)
    except websockets.ConnectionClosed:
        pass
    finally:
        unsubscribe()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError, websockets.ConnectionClosed):
            await sender
        log.info("Relay client disconnected order=%s", order_id)


async def _run_server(host: str, port: int, store: RemoteOrderStore) -> None:
    async with websockets.serve(functools.partial(_handler, store=store), host, port):
        await asyncio.Future()


def main() -> None:
    log_path = setup_logging(component="relay")
    log.info("Shared order relay listening on ws://%s:%s/ws (log=%s)", WS_RELAY_HOST, WS_RELAY_PORT, log_path)
    asyncio.run(_run_server(WS_RELAY_HOST, WS_RELAY_PORT, InMemoryOrderStore()))


if __name__ == "__main__":
    main()
