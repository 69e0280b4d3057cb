from __future__ import annotations


class OrderSyncError(Exception):
    """Base class for shared-order synchronization errors."""


class OrderNotFoundError(OrderSyncError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"order {order_id!r} not found")
        self.order_id = order_id


class StoreWriteError(OrderSyncError):
    """A write was rejected by the store or timed out in transport."""

    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(f"write failed for order {order_id!r}: {reason}")
        self.order_id = order_id
        self.reason = reason


class SessionClosedError(OrderSyncError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"sync session for order {order_id!r} is closed")
        self.order_id = order_id
