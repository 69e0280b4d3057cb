from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional

# Server -> client
MSG_SNAPSHOT = "snapshot"
MSG_ACK = "ack"
MSG_ERROR = "error"
MSG_STATUS = "status"
# Client -> server
MSG_WRITE = "write"


def now_ms() -> int:
    return int(time.time() * 1000)


def make_message(
    msg_type: str,
    order_id: str,
    ts_ms: int,
    data: Optional[Dict[str, Any]],
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    msg = {
        "type": msg_type,
        "order_id": order_id,
        "ts_ms": ts_ms,
        "data": data,
    }
    if request_id is not None:
        msg["request_id"] = request_id
    return msg


def encode_message(msg: Dict[str, Any]) -> str:
    return json.dumps(msg, ensure_ascii=False)


def decode_message(raw: str | bytes) -> Optional[Dict[str, Any]]:
    """Parse one frame; anything that is not a JSON object yields ``None``."""
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(msg, dict) or not isinstance(msg.get("type"), str):
        return None
    return msg
