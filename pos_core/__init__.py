"""Shared-order synchronization core: order model, snapshot handling and the sync engine."""

from .debounce import DebounceScheduler
from .equality import project_order, snapshots_equal
from .errors import OrderNotFoundError, OrderSyncError, SessionClosedError, StoreWriteError
from .order_model import LocalOrderModel, OrderItem, generate_order_number, parse_service_charge
from .snapshot import OrderSnapshot, coerce_snapshot
from .store import InMemoryOrderStore, RemoteOrderStore, iter_snapshots
from .sync_engine import SyncEngine, SyncPhase, SyncResult

__all__ = [
    "DebounceScheduler",
    "InMemoryOrderStore",
    "LocalOrderModel",
    "OrderItem",
    "OrderNotFoundError",
    "OrderSnapshot",
    "OrderSyncError",
    "RemoteOrderStore",
    "SessionClosedError",
    "StoreWriteError",
    "SyncEngine",
    "SyncPhase",
    "SyncResult",
    "coerce_snapshot",
    "generate_order_number",
    "iter_snapshots",
    "parse_service_charge",
    "project_order",
    "snapshots_equal",
]
