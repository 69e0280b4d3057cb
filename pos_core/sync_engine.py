from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Union

from .debounce import DebounceScheduler
from .equality import project_order, snapshots_equal
from .errors import OrderNotFoundError, OrderSyncError, SessionClosedError, StoreWriteError
from .order_model import LocalOrderModel
from .settings import SYNC_DEBOUNCE_MS, SYNC_WRITE_TIMEOUT_S
from .snapshot import OrderSnapshot, coerce_snapshot
from .store import RemoteOrderStore

log = logging.getLogger("pos_core.sync_engine")

Patch = Union[Mapping[str, Any], Callable[[LocalOrderModel], Any]]


class SyncPhase(str, Enum):
    LOADING = "loading"
    NOT_FOUND = "not_found"
    CLEAN = "clean"
    DIRTY = "dirty"
    PUSHING = "pushing"
    APPLYING = "applying"
    CLOSED = "closed"


@dataclass
class SyncResult:
    action: str  # "applied" | "unchanged" | "discarded" | "not_found" | "ignored" | "pushing" | "skipped" | "clean" | "dirty" | "failed"
    details: str = ""


class SyncEngine:
    """Keeps one surface's :class:`LocalOrderModel` convergent with the shared store.

    Key behaviors:
      - local edits mark the order dirty and (re)arm a single debounce timer;
        a burst of edits produces one write carrying the latest state
      - at most one write is in flight; edits made meanwhile keep the order
        dirty and trigger another write once the ack arrives
      - remote snapshots are discarded while dirty (local edits win until
        they land), ignored when structurally equal to the model, otherwise
        copied in during the APPLYING phase, which never marks the order dirty
      - a failed write leaves the order dirty and reports an error; the next
        edit (or a timer still pending) is the only retry
      - concurrent dirty surfaces race; the last accepted write wins in full

    The UI reads ``model`` and ``status`` and mutates only via
    ``apply_local_edit`` (or the helpers built on it).
    """

    def __init__(
        self,
        order_id: str,
        store: RemoteOrderStore,
        model: Optional[LocalOrderModel] = None,
        debounce_ms: int = SYNC_DEBOUNCE_MS,
        write_timeout_s: float = SYNC_WRITE_TIMEOUT_S,
        on_status: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[LocalOrderModel], None]] = None,
        on_error: Optional[Callable[[OrderSyncError], None]] = None,
        scheduler: Optional[DebounceScheduler] = None,
    ) -> None:
        if not order_id:
            raise ValueError("order_id is required")
        if model is not None and model.order_id != order_id:
            raise ValueError(f"model is bound to {model.order_id!r}, not {order_id!r}")
        self.order_id = order_id
        self.store = store
        self.model = model or LocalOrderModel(order_id=order_id)
        self.write_timeout_s = float(write_timeout_s)
        self.on_status_cb = on_status
        self.on_change_cb = on_change
        self.on_error_cb = on_error
        self._scheduler = scheduler or DebounceScheduler(max(0, int(debounce_ms)) / 1000.0)

        self.phase: SyncPhase = SyncPhase.LOADING
        self.dirty: bool = False
        self.loaded: bool = False
        self.order_found: Optional[bool] = None
        self.last_error: Optional[OrderSyncError] = None
        self.last_revision: Optional[int] = None
        self.write_count: int = 0

        # Bumped on every effective local edit; compared on ack to detect mid-flight edits.
        self._edit_seq: int = 0
        self._push_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._last_status: str = self.status

    # -- observation -------------------------------------------------------

    @property
    def status(self) -> str:
        if self.phase is SyncPhase.CLOSED:
            return "closed"
        if self.phase is SyncPhase.PUSHING:
            return "pushing"
        if self.dirty:
            return "error" if self.last_error is not None else "dirty"
        if self.phase is SyncPhase.APPLYING:
            return SyncPhase.CLEAN.value
        return self.phase.value

    @property
    def pushing(self) -> bool:
        return self._push_task is not None

    @property
    def closed(self) -> bool:
        return self.phase is SyncPhase.CLOSED

    def share_path(self) -> str:
        return f"/orders/{self.order_id}"

    def _emit_status(self) -> None:
        status = self.status
        if status == self._last_status:
            return
        self._last_status = status
        if self.on_status_cb is None:
            return
        try:
            self.on_status_cb(status)
        except Exception:
            log.exception("Status callback error (order=%s status=%s)", self.order_id, status)

    def _emit_change(self) -> None:
        if self.on_change_cb is None:
            return
        try:
            self.on_change_cb(self.model)
        except Exception:
            log.exception("Change callback error (order=%s)", self.order_id)

    def _emit_error(self, err: OrderSyncError) -> None:
        if self.on_error_cb is None:
            return
        try:
            self.on_error_cb(err)
        except Exception:
            log.exception("Error callback error (order=%s)", self.order_id)

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the order; the store delivers the current value right away."""
        if self.closed:
            raise SessionClosedError(self.order_id)
        if self._unsubscribe is not None:
            raise RuntimeError(f"sync engine for {self.order_id!r} already started")
        log.info("Subscribing to order=%s", self.order_id)
        self._unsubscribe = self.store.subscribe(self.order_id, self.on_remote_snapshot)

    def close(self) -> None:
        """Tear down: cancel the pending push timer and stop applying snapshots.

        A write already in flight is left to finish, but its outcome is ignored.
        """
        if self.closed:
            return
        self.phase = SyncPhase.CLOSED
        self._scheduler.close()
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        log.info("Closed sync session order=%s dirty=%s", self.order_id, self.dirty)
        self._emit_status()

    async def wait_idle(self) -> None:
        """Wait for the write currently in flight, if any."""
        task = self._push_task
        if task is not None:
            await asyncio.shield(task)

    # -- local edits -------------------------------------------------------

    def apply_local_edit(self, patch: Patch) -> bool:
        """The only sanctioned way to mutate the model.

        ``patch`` is either a mapping of scalar fields (see
        :meth:`LocalOrderModel.update_fields`) or a callable receiving the
        model. Returns whether the model changed; no-op edits do not dirty.
        """
        if self.closed:
            raise SessionClosedError(self.order_id)

        # Patches run on a draft so a patch that raises leaves the model untouched.
        draft = copy.deepcopy(self.model)
        if isinstance(patch, Mapping):
            draft.update_fields(**patch)
        else:
            patch(draft)
        if project_order(draft) == project_order(self.model):
            return False
        self.model.replace_from(draft)

        if self.phase is SyncPhase.APPLYING:
            # Re-entrant mutation while copying a remote snapshot.
            log.debug("Absorbed edit during apply (order=%s)", self.order_id)
            return True

        self._edit_seq += 1
        self.dirty = True
        if self.loaded and self.phase is not SyncPhase.PUSHING:
            self.phase = SyncPhase.DIRTY
        self._scheduler.schedule(self.on_debounce_elapsed)
        self._emit_change()
        self._emit_status()
        return True

    def increment_item(self, item_id: str, name: str, unit_price, item_code: Optional[str] = None) -> bool:
        return self.apply_local_edit(lambda m: m.increment_item(item_id, name, unit_price, item_code))

    def decrement_item(self, item_id: str) -> bool:
        return self.apply_local_edit(lambda m: m.decrement_item(item_id))

    def set_quantity(self, item_id: str, quantity: int) -> bool:
        return self.apply_local_edit(lambda m: m.set_quantity(item_id, quantity))

    def set_unit_price(self, item_id: str, unit_price) -> bool:
        return self.apply_local_edit(lambda m: m.set_unit_price(item_id, unit_price))

    def set_service_charge(self, value) -> bool:
        return self.apply_local_edit({"service_charge": value})

    def set_text(self, field_name: str, value: Optional[str]) -> bool:
        return self.apply_local_edit({field_name: value})

    # -- outbound ----------------------------------------------------------

    def on_debounce_elapsed(self) -> SyncResult:
        if self.closed:
            return SyncResult("ignored", "closed")
        if not self.dirty:
            return SyncResult("skipped", "clean")
        if not self.loaded:
            return SyncResult("skipped", "not_loaded")
        if self.pushing:
            return SyncResult("skipped", "in_flight")
        return self._start_push()

    def _start_push(self) -> SyncResult:
        seq = self._edit_seq
        payload = self.model.to_payload()
        self.phase = SyncPhase.PUSHING
        self.last_error = None
        log.info("Pushing order=%s items=%d seq=%d", self.order_id, len(self.model.items), seq)
        self._push_task = asyncio.get_running_loop().create_task(self._push(payload, seq))
        self._emit_status()
        return SyncResult("pushing", f"seq={seq}")

    async def _push(self, payload: dict, seq: int) -> None:
        try:
            await asyncio.wait_for(self.store.write(self.order_id, payload), timeout=self.write_timeout_s)
        except asyncio.CancelledError:
            self._push_task = None
            raise
        except asyncio.TimeoutError:
            self.on_write_failure(TimeoutError(f"timed out after {self.write_timeout_s}s"))
            return
        except Exception as exc:
            self.on_write_failure(exc)
            return
        self.on_write_ack(seq)

    def on_write_ack(self, seq: int) -> SyncResult:
        self._push_task = None
        if self.closed:
            log.debug("Ignoring write ack after close (order=%s)", self.order_id)
            return SyncResult("ignored", "closed")
        self.write_count += 1
        self.order_found = True
        if seq == self._edit_seq:
            self.dirty = False
            self.phase = SyncPhase.CLEAN
            log.info("Write acknowledged order=%s seq=%d", self.order_id, seq)
            self._emit_status()
            return SyncResult("clean", f"seq={seq}")

        self.phase = SyncPhase.DIRTY
        if not self._scheduler.pending:
            self._scheduler.schedule(self.on_debounce_elapsed)
        log.info("Write acknowledged order=%s seq=%d but edited to seq=%d", self.order_id, seq, self._edit_seq)
        self._emit_status()
        return SyncResult("dirty", f"seq={seq} latest={self._edit_seq}")

    def on_write_failure(self, exc: BaseException) -> SyncResult:
        self._push_task = None
        if self.closed:
            return SyncResult("ignored", "closed")
        err = exc if isinstance(exc, StoreWriteError) else StoreWriteError(self.order_id, str(exc) or type(exc).__name__)
        self.last_error = err
        self.phase = SyncPhase.DIRTY
        log.warning("Write failed order=%s: %s", self.order_id, err.reason)
        self._emit_error(err)
        self._emit_status()
        return SyncResult("failed", err.reason)

    async def publish(self) -> str:
        """Write the current model now, bypassing the debounce.

        Creates the order at its key when it does not exist yet. Returns the
        share path; raises :class:`StoreWriteError` when the write fails.
        """
        if self.closed:
            raise SessionClosedError(self.order_id)
        self._scheduler.cancel()
        if self._push_task is not None:
            await self.wait_idle()
            if self.closed:
                raise SessionClosedError(self.order_id)
        self.dirty = True
        self._start_push()
        await self.wait_idle()
        if self.dirty and self.last_error is not None:
            raise self.last_error
        return self.share_path()

    # -- inbound -----------------------------------------------------------

    def on_remote_snapshot(self, raw: Optional[Mapping[str, Any]]) -> SyncResult:
        if self.closed:
            return SyncResult("ignored", "closed")

        first = not self.loaded
        self.loaded = True

        if raw is None:
            self.order_found = False
            if self.dirty:
                self._leave_loading()
                return SyncResult("not_found", "dirty")
            log.warning("Order not found order=%s", self.order_id)
            self.phase = SyncPhase.NOT_FOUND
            self._emit_error(OrderNotFoundError(self.order_id))
            self._emit_status()
            return SyncResult("not_found")

        if not isinstance(raw, Mapping):
            log.warning("Ignoring malformed snapshot order=%s type=%s", self.order_id, type(raw).__name__)
            if first:
                self.loaded = False
            return SyncResult("ignored", "malformed")

        snapshot = coerce_snapshot(raw)
        if snapshot.order_number and snapshot.order_number != self.order_id:
            log.warning("Ignoring snapshot for order=%s on session %s", snapshot.order_number, self.order_id)
            if first:
                self.loaded = False
            return SyncResult("ignored", "foreign_order")

        self.order_found = True
        if self.dirty:
            self._leave_loading()
            log.debug("Discarded snapshot while dirty order=%s revision=%s", self.order_id, snapshot.revision)
            return SyncResult("discarded", f"revision={snapshot.revision}")

        self.last_revision = snapshot.revision
        if snapshots_equal(self.model, snapshot):
            self.phase = SyncPhase.CLEAN
            self._emit_status()
            log.debug("Snapshot unchanged order=%s revision=%s", self.order_id, snapshot.revision)
            return SyncResult("unchanged", f"revision={snapshot.revision}")

        self._apply(snapshot)
        return SyncResult("applied", f"revision={snapshot.revision}")

    def _leave_loading(self) -> None:
        if self.phase in (SyncPhase.LOADING, SyncPhase.NOT_FOUND):
            self.phase = SyncPhase.DIRTY
            if not self._scheduler.pending:
                self._scheduler.schedule(self.on_debounce_elapsed)
            self._emit_status()

    def _apply(self, snapshot: OrderSnapshot) -> None:
        self.phase = SyncPhase.APPLYING
        try:
            self.model.replace_from(snapshot)
            log.info(
                "Applied snapshot order=%s revision=%s items=%d",
                self.order_id,
                snapshot.revision,
                len(snapshot.items),
            )
            self._emit_change()
        finally:
            if self.phase is SyncPhase.APPLYING:
                self.phase = SyncPhase.CLEAN
        self._emit_status()
