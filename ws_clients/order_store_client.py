from __future__ import annotations

import asyncio
import logging
import random
import ssl
import uuid
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

from websockets.asyncio.client import connect as ws_connect  # type: ignore
from websockets.exceptions import ConnectionClosed  # type: ignore

from pos_api.protocols import MSG_ACK, MSG_ERROR, MSG_SNAPSHOT, MSG_STATUS, MSG_WRITE, decode_message, encode_message, make_message, now_ms
from pos_core.errors import StoreWriteError
from pos_core.settings import (
    INSECURE_TLS,
    WS_OPEN_TIMEOUT_S,
    WS_RECONNECT_BACKOFF_MAX_S,
    WS_RECONNECT_BACKOFF_S,
)
from pos_core.store import RemoteOrderStore, SnapshotCallback, Unsubscribe

log = logging.getLogger("ws_clients.order_store")


def _ssl_context(insecure_tls: bool) -> Optional[ssl.SSLContext]:
    if not insecure_tls:
        return None
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


class _OrderConnection:
    """One auto-reconnecting relay connection for one order id."""

    def __init__(self, store: "WebSocketOrderStore", order_id: str) -> None:
        self.store = store
        self.order_id = order_id
        self.callbacks: Dict[int, SnapshotCallback] = {}
        self.pending: Dict[str, asyncio.Future] = {}
        self.ws = None
        self.has_value = False
        self.last_value: Optional[dict] = None
        self._stop = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def close(self) -> None:
        self._stop = True
        self._fail_pending("subscription closed")
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    def _dispatch(self, value: Optional[dict]) -> None:
        self.has_value = True
        self.last_value = value
        for callback in list(self.callbacks.values()):
            try:
                callback(value)
            except Exception:
                log.exception("Snapshot callback error (order=%s)", self.order_id)

    def _fail_pending(self, reason: str) -> None:
        pending, self.pending = self.pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(StoreWriteError(self.order_id, reason))

    def _handle(self, msg: Dict[str, Any]) -> None:
        typ = msg["type"]
        if typ == MSG_SNAPSHOT:
            data = msg.get("data")
            self._dispatch(data if isinstance(data, dict) else None)
            return
        if typ in (MSG_ACK, MSG_ERROR):
            fut = self.pending.pop(str(msg.get("request_id")), None)
            if fut is None or fut.done():
                return
            if typ == MSG_ACK:
                fut.set_result(None)
            else:
                message = (msg.get("data") or {}).get("message", "rejected")
                fut.set_exception(StoreWriteError(self.order_id, str(message)))
            return
        if typ == MSG_STATUS:
            log.info("Relay status order=%s: %s", self.order_id, (msg.get("data") or {}).get("message"))

    async def _read_loop(self, ws) -> None:
        async for raw in ws:
            msg = decode_message(raw)
            if msg is None:
                log.warning("Dropping malformed relay frame (order=%s)", self.order_id)
                continue
            self._handle(msg)

    async def _run(self) -> None:
        attempt = 0
        while not self._stop:
            attempt += 1
            try:
                async with self.store._connect(self.order_id) as ws:
                    self.ws = ws
                    attempt = 0
                    log.info("Connected to relay order=%s", self.order_id)
                    await self._read_loop(ws)
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as exc:
                log.warning("Relay connection closed order=%s: %s", self.order_id, exc)
            except Exception:
                log.exception("Relay connection error order=%s", self.order_id)
            finally:
                self.ws = None
                self._fail_pending("connection closed")

            if self._stop:
                break
            await asyncio.sleep(self.store._backoff(attempt))

    async def write(self, value: Mapping[str, Any]) -> None:
        ws = self.ws
        if ws is None:
            raise StoreWriteError(self.order_id, "not connected")
        request_id = uuid.uuid4().hex
        fut = asyncio.get_running_loop().create_future()
        self.pending[request_id] = fut
        try:
            await ws.send(encode_message(make_message(MSG_WRITE, self.order_id, now_ms(), dict(value), request_id=request_id)))
            await fut
        except ConnectionClosed as exc:
            raise StoreWriteError(self.order_id, f"connection closed: {exc}") from exc
        finally:
            self.pending.pop(request_id, None)


class WebSocketOrderStore(RemoteOrderStore):
    """:class:`RemoteOrderStore` backed by the shared order relay."""

    def __init__(
        self,
        base_url: str = "ws://localhost:8765/ws",
        reconnect_backoff_s: float = WS_RECONNECT_BACKOFF_S,
        reconnect_backoff_max_s: float = WS_RECONNECT_BACKOFF_MAX_S,
        open_timeout_s: float = WS_OPEN_TIMEOUT_S,
        insecure_tls: bool = INSECURE_TLS,
    ) -> None:
        self.base_url = base_url
        self.reconnect_backoff_s = max(0.0, float(reconnect_backoff_s))
        self.reconnect_backoff_max_s = max(self.reconnect_backoff_s, float(reconnect_backoff_max_s))
        self.open_timeout_s = max(0.1, float(open_timeout_s))
        self.insecure_tls = insecure_tls
        self._connections: Dict[str, _OrderConnection] = {}
        self._next_token = 0

    def url_for(self, order_id: str) -> str:
        return f"{self.base_url}?order={quote(order_id, safe='')}"

    def _connect(self, order_id: str):
        kwargs: Dict[str, Any] = {"open_timeout": self.open_timeout_s, "close_timeout": 5}
        ssl_ctx = _ssl_context(self.insecure_tls)
        if ssl_ctx is not None:
            kwargs["ssl"] = ssl_ctx
        return ws_connect(self.url_for(order_id), **kwargs)

    def _backoff(self, attempt: int) -> float:
        # Exponential backoff with jitter.
        base = self.reconnect_backoff_s
        cap = self.reconnect_backoff_max_s
        if base <= 0.0 or cap <= 0.0:
            return 0.0
        backoff = min(cap, base * (2 ** max(0, attempt - 1)))
        return backoff * (0.7 + 0.6 * random.random())

    def subscribe(self, order_id: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        conn = self._connections.get(order_id)
        if conn is None:
            conn = _OrderConnection(self, order_id)
            self._connections[order_id] = conn
        token = self._next_token
        self._next_token += 1
        conn.callbacks[token] = on_snapshot
        conn.start()
        if conn.has_value:
            # Late subscribers get the value the connection already holds.
            asyncio.get_running_loop().call_soon(self._replay, conn, token)

        def unsubscribe() -> None:
            conn.callbacks.pop(token, None)
            if not conn.callbacks and self._connections.get(order_id) is conn:
                del self._connections[order_id]
                conn.close()

        return unsubscribe

    def _replay(self, conn: _OrderConnection, token: int) -> None:
        callback = conn.callbacks.get(token)
        if callback is None:
            return
        try:
            callback(conn.last_value)
        except Exception:
            log.exception("Snapshot callback error (order=%s)", conn.order_id)

    async def write(self, order_id: str, value: Mapping[str, Any]) -> None:
        conn = self._connections.get(order_id)
        if conn is not None and conn.ws is not None:
            await conn.write(value)
            return
        await self._write_once(order_id, value)

    async def _write_once(self, order_id: str, value: Mapping[str, Any]) -> None:
        """Write over a short-lived connection when nothing is subscribed."""
        request_id = uuid.uuid4().hex
        try:
            async with self._connect(order_id) as ws:
                await ws.send(encode_message(make_message(MSG_WRITE, order_id, now_ms(), dict(value), request_id=request_id)))
                async for raw in ws:
                    msg = decode_message(raw)
                    if msg is None or msg.get("request_id") != request_id:
                        continue
                    if msg["type"] == MSG_ACK:
                        return
                    if msg["type"] == MSG_ERROR:
                        message = (msg.get("data") or {}).get("message", "rejected")
                        raise StoreWriteError(order_id, str(message))
        except StoreWriteError:
            raise
        except (ConnectionClosed, OSError, asyncio.TimeoutError) as exc:
            raise StoreWriteError(order_id, f"transport error: {exc}") from exc
        raise StoreWriteError(order_id, "connection closed before ack")

    def close(self) -> None:
        connections, self._connections = self._connections, {}
        for conn in connections.values():
            conn.close()

