from __future__ import annotations

import asyncio
import json
import os
from typing import Optional

from pos_core.store import iter_snapshots
from ws_clients.order_store_client import WebSocketOrderStore


def _env(name: str, default: Optional[str] = None) -> str:
    value = os.getenv(name, default)
    if value is None:
        raise RuntimeError(f"Missing env var: {name}")
    return value


async def main() -> None:
    host = os.getenv("RELAY_HOST", "localhost")
    port = os.getenv("RELAY_PORT", "8765")
    order_id = _env("ORDER")

    store = WebSocketOrderStore(f"ws://{host}:{port}/ws")
    print(f"Watching {store.url_for(order_id)}")
    try:
        async for value in iter_snapshots(store, order_id):
            if value is None:
                print(f"{order_id}: not found")
                continue
            print(json.dumps(value, ensure_ascii=False))
    finally:
        store.close()


if __name__ == "__main__":
    asyncio.run(main())
