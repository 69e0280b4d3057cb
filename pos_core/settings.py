from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


# Quiet period after the last local edit before the order is pushed.
SYNC_DEBOUNCE_MS = _env_int("SYNC_DEBOUNCE_MS", 750)
SYNC_WRITE_TIMEOUT_S = _env_float("SYNC_WRITE_TIMEOUT_S", 10.0)

# Relay server / client
WS_RELAY_HOST = os.getenv("WS_RELAY_HOST", "0.0.0.0")
WS_RELAY_PORT = _env_int("WS_RELAY_PORT", 8765)
WS_RECONNECT_BACKOFF_S = _env_float("WS_RECONNECT_BACKOFF_S", 1.0)
WS_RECONNECT_BACKOFF_MAX_S = _env_float("WS_RECONNECT_BACKOFF_MAX_S", 30.0)
WS_OPEN_TIMEOUT_S = _env_float("WS_OPEN_TIMEOUT_S", 10.0)

# TLS verification should remain enabled by default.
INSECURE_TLS = _env_bool("INSECURE_TLS", False)
