from __future__ import annotations

import asyncio
import json

import pos_api.relay as relay
from pos_core.store import InMemoryOrderStore


class FakeRequest:
    def __init__(self, path: str):
        self.path = path


class FakeWS:
    def __init__(self, path: str, incoming=(), linger_s: float = 0.0):
        self.request = FakeRequest(path)
        self._incoming = list(incoming)
        self._linger_s = linger_s
        self.sent = []

    async def send(self, payload: str) -> None:
        self.sent.append(json.loads(payload))

    def __aiter__(self):
        return self

    async def __anext__(self):
        await asyncio.sleep(0.01)
        if not self._incoming:
            await asyncio.sleep(self._linger_s)
            raise StopAsyncIteration
        return self._incoming.pop(0)

    def of_type(self, typ: str):
        return [m for m in self.sent if m["type"] == typ]


def _write(request_id: str, data) -> str:
    return json.dumps({"type": "write", "order_id": "ORD-1", "ts_ms": 0, "data": data, "request_id": request_id})


def test_write_is_acked_and_broadcast():
    store = InMemoryOrderStore()
    writer = FakeWS("/ws?order=ORD-1", [_write("r1", {"items": [], "serviceCharge": 4})])
    watcher = FakeWS("/ws?order=ORD-1", linger_s=0.1)

    async def scenario():
        await asyncio.gather(relay._handler(watcher, store), relay._handler(writer, store))

    asyncio.run(scenario())

    assert writer.sent[0]["type"] == "status"
    assert writer.sent[0]["data"]["message"] == "connected"
    acks = writer.of_type("ack")
    assert len(acks) == 1 and acks[0]["request_id"] == "r1"

    watched = watcher.of_type("snapshot")
    assert watched[0]["data"] is None
    assert watched[-1]["data"]["serviceCharge"] == 4
    assert watched[-1]["data"]["orderNumber"] == "ORD-1"
    assert store.get("ORD-1")["serviceCharge"] == 4
    assert store.subscriber_count("ORD-1") == 0


def test_missing_order_param_is_rejected():
    ws = FakeWS("/ws")
    asyncio.run(relay._handler(ws, InMemoryOrderStore()))
    assert len(ws.sent) == 1
    assert ws.sent[0]["type"] == "status"
    assert ws.sent[0]["data"]["message"] == "order is required"


def test_bad_frames_get_error_replies():
    store = InMemoryOrderStore()
    ws = FakeWS(
        "/ws?order=ORD-1",
        [
            "{not json",
            json.dumps({"type": "delete", "request_id": "r2"}),
            _write("r3", ["not", "an", "object"]),
        ],
    )
    asyncio.run(relay._handler(ws, store))

    errors = ws.of_type("error")
    assert [e.get("request_id") for e in errors] == [None, "r2", "r3"]
    assert errors[0]["data"]["message"] == "malformed message"
    assert store.get("ORD-1") is None


def test_store_failure_is_reported_to_writer():
    class BrokenStore(InMemoryOrderStore):
        async def write(self, order_id, value):
            raise OSError("disk full")

    ws = FakeWS("/ws?order=ORD-1", [_write("r4", {"items": []})])
    asyncio.run(relay._handler(ws, BrokenStore()))

    errors = ws.of_type("error")
    assert errors[0]["request_id"] == "r4"
    assert "disk full" in errors[0]["data"]["message"]
    assert ws.of_type("ack") == []
