from __future__ import annotations

import asyncio
import copy
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Tuple

from .snapshot import ORDER_NUMBER_KEY, REVISION_KEY

log = logging.getLogger("pos_core.store")

SnapshotCallback = Callable[[Optional[dict]], None]
Unsubscribe = Callable[[], None]


class RemoteOrderStore(ABC):
    """Real-time key/value store holding one current value per order id.

    Writes replace the whole value (last write wins) and are pushed to every
    subscriber of the key, the writer included.
    """

    @abstractmethod
    def subscribe(self, order_id: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Deliver the current value (or ``None``) now, then one call per write."""
        raise NotImplementedError

    @abstractmethod
    async def write(self, order_id: str, value: Mapping[str, Any]) -> None:
        raise NotImplementedError


def _now_ms() -> int:
    return int(time.time() * 1000)


class InMemoryOrderStore(RemoteOrderStore):
    """Process-local store; also the backing store of the websocket relay."""

    def __init__(self, write_latency_s: float = 0.0) -> None:
        self.write_latency_s = max(0.0, float(write_latency_s))
        self._values: Dict[str, dict] = {}
        self._subscribers: Dict[str, Dict[int, SnapshotCallback]] = {}
        self._next_token = 0
        self._last_revision = 0
        self.writes: List[Tuple[str, dict]] = []

    def get(self, order_id: str) -> Optional[dict]:
        value = self._values.get(order_id)
        return copy.deepcopy(value) if value is not None else None

    def subscriber_count(self, order_id: str) -> int:
        return len(self._subscribers.get(order_id, {}))

    def writes_for(self, order_id: str) -> List[dict]:
        return [value for key, value in self.writes if key == order_id]

    def _next_revision(self) -> int:
        self._last_revision = max(_now_ms(), self._last_revision + 1)
        return self._last_revision

    def subscribe(self, order_id: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        token = self._next_token
        self._next_token += 1
        self._subscribers.setdefault(order_id, {})[token] = on_snapshot

        def unsubscribe() -> None:
            subs = self._subscribers.get(order_id)
            if subs is None:
                return
            subs.pop(token, None)
            if not subs:
                self._subscribers.pop(order_id, None)

        self._deliver(order_id, token, on_snapshot, self._values.get(order_id))
        return unsubscribe

    def _deliver(self, order_id: str, token: int, callback: SnapshotCallback, value: Optional[dict]) -> None:
        if token not in self._subscribers.get(order_id, {}):
            return
        try:
            callback(copy.deepcopy(value) if value is not None else None)
        except Exception:
            log.exception("Subscriber callback error (order=%s)", order_id)

    async def write(self, order_id: str, value: Mapping[str, Any]) -> None:
        if not order_id:
            raise ValueError("order_id is required")
        if self.write_latency_s > 0:
            await asyncio.sleep(self.write_latency_s)
        stored = copy.deepcopy(dict(value))
        stored[ORDER_NUMBER_KEY] = order_id
        stored[REVISION_KEY] = self._next_revision()
        self._values[order_id] = stored
        self.writes.append((order_id, copy.deepcopy(stored)))
        log.debug("Stored order=%s revision=%s", order_id, stored[REVISION_KEY])
        for token, callback in list(self._subscribers.get(order_id, {}).items()):
            self._deliver(order_id, token, callback, stored)


async def iter_snapshots(store: RemoteOrderStore, order_id: str) -> AsyncIterator[Optional[dict]]:
    """Expose a store subscription as an endless async iterator.

    Each new iteration subscribes afresh, so it starts with the current value.
    Closing the iterator unsubscribes.
    """
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = store.subscribe(order_id, queue.put_nowait)
    try:
        while True:
            yield await queue.get()
    finally:
        unsubscribe()
