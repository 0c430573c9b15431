from __future__ import annotations

import logging
import threading
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple

from .errors import SequenceGapError, StoreWriteError
from .price_levels import PriceLevelSet
from .types import (
    DiffEvent,
    PriceLevel,
    Side,
    Snapshot,
    SyncPhase,
    SyncResult,
    SyncState,
)


class OrderBookSynchronizer:
    """State machine reconciling a REST snapshot with the diff-depth stream.

    Phases: seeding -> buffering -> synced, with desynced reachable from any of
    them and terminal until the next ``seed()``.

    Key behaviors:
      - diffs fed before the snapshot are held (bounded) and replayed after seeding
      - the first useful diff must bridge the snapshot: U <= lastUpdateId+1 <= u
      - once synced each diff must continue at last_applied_id+1; older ones are stale
      - any hole moves the book to desynced; later diffs are ignored

    ``admit`` performs only the sequence check so that bid and ask deltas can be
    applied by separate workers through ``apply_side``. ``apply_diff`` does both
    in one call.
    """

    def __init__(self, instrument: str, store=None, max_buffer_size: Optional[int] = 10_000):
        self.instrument = instrument
        self.store = store
        self.bids = PriceLevelSet(Side.BID)
        self.asks = PriceLevelSet(Side.ASK)
        self.buffer: List[DiffEvent] = []
        self.max_buffer_size = int(max_buffer_size) if max_buffer_size else None
        self.error: Optional[SequenceGapError] = None
        self.on_phase_change: Optional[Callable[[SyncState], None]] = None
        self._state = SyncState()
        # Guards _state and buffer; the level sets are owned by one worker per side.
        self._lock = threading.Lock()
        self._log = logging.getLogger("book_core.sync")

    @property
    def phase(self) -> SyncPhase:
        return self._state.phase

    @property
    def last_applied_id(self) -> Optional[int]:
        return self._state.last_applied_id

    @property
    def state(self) -> SyncState:
        with self._lock:
            return replace(self._state)

    @property
    def is_synced(self) -> bool:
        return self._state.phase is SyncPhase.SYNCED

    def book(self, side: Side) -> PriceLevelSet:
        return self.bids if Side(side) is Side.BID else self.asks

    def top_n(self, n: int) -> Tuple[List[PriceLevel], List[PriceLevel]]:
        return self.bids.top_n(n), self.asks.top_n(n)

    def _notify(self) -> None:
        cb = self.on_phase_change
        if cb is None:
            return
        try:
            cb(self.state)
        except Exception:
            self._log.exception("Phase change callback failed (instrument=%s)", self.instrument)

    def _set_phase(self, phase: SyncPhase, reason: str) -> bool:
        if self._state.phase is phase:
            return False
        self._log.info(
            "Sync %s: %s -> %s (%s) lastUpdateId=%s",
            self.instrument,
            self._state.phase.value,
            phase.value,
            reason,
            self._state.last_applied_id,
        )
        self._state.phase = phase
        self._state.reason = reason
        return True

    def _desync(self, err: SequenceGapError) -> SyncResult:
        self.error = err
        self.buffer.clear()
        self._set_phase(SyncPhase.DESYNCED, err.reason)
        self._log.error("Order book %s desynchronized: %s", self.instrument, err)
        return SyncResult("gap", str(err))

    def reset(self) -> None:
        """Return to seeding for a fresh snapshot.

        Levels stay in place so the next ``seed()`` can remove the ones the new
        snapshot no longer contains.
        """
        with self._lock:
            self.buffer.clear()
            self.error = None
            self._state.last_applied_id = None
            changed = self._set_phase(SyncPhase.SEEDING, "reset")
        if changed:
            self._notify()

    def mark_desynced(self, reason: str) -> None:
        with self._lock:
            if self._state.phase is SyncPhase.DESYNCED:
                return
            self.buffer.clear()
            self._set_phase(SyncPhase.DESYNCED, reason)
        self._notify()

    def seed(self, snapshot: Snapshot) -> List[SyncResult]:
        """Load a snapshot, then replay any diffs held while it was being fetched."""
        if snapshot.instrument.lower() != self.instrument.lower():
            raise ValueError(
                f"snapshot for {snapshot.instrument!r} cannot seed book {self.instrument!r}"
            )
        with self._lock:
            pending = list(self.buffer) if self._state.phase is SyncPhase.SEEDING else []
            self.buffer.clear()
            self.error = None
            self._state.last_applied_id = None
            self._set_phase(SyncPhase.SEEDING, "snapshot")

        for side, levels in ((Side.BID, snapshot.bids), (Side.ASK, snapshot.asks)):
            self._load_side(side, levels)

        with self._lock:
            self._state.last_applied_id = int(snapshot.last_update_id)
            self._set_phase(SyncPhase.BUFFERING, "snapshot_loaded")
        self._log.info(
            "Seeded %s lastUpdateId=%s bids=%d asks=%d pending=%d",
            self.instrument,
            snapshot.last_update_id,
            len(self.bids),
            len(self.asks),
            len(pending),
        )
        self._notify()

        results: List[SyncResult] = []
        for ev in pending:
            results.append(self.apply_diff(ev))
            if self._state.phase is SyncPhase.DESYNCED:
                break
        return results

    def _load_side(self, side: Side, levels: Iterable[PriceLevel]) -> None:
        book = self.book(side)
        levels = list(levels)
        keep = {level.price for level in levels if level.qty != 0}
        for price in book.prices():
            if price not in keep:
                book.remove(price)
                self._mirror(side, price, Decimal(0))
        for level in levels:
            book.upsert(level.price, level.qty)
            self._mirror(side, level.price, level.qty)

    def admit(self, ev: DiffEvent) -> SyncResult:
        """Sequence-check one diff and advance last_applied_id if it is accepted."""
        with self._lock:
            result, changed = self._admit_locked(ev)
        if changed:
            self._notify()
        return result

    def _admit_locked(self, ev: DiffEvent) -> Tuple[SyncResult, bool]:
        phase = self._state.phase

        if phase is SyncPhase.DESYNCED:
            return SyncResult("ignored", self._state.reason), False

        if phase is SyncPhase.SEEDING:
            self.buffer.append(ev)
            if self.max_buffer_size and len(self.buffer) > self.max_buffer_size:
                return self._desync(SequenceGapError(None, reason="buffer_overflow")), True
            return SyncResult("buffered", "no_snapshot"), False

        U, u = int(ev.first_update_id), int(ev.final_update_id)
        last = int(self._state.last_applied_id)

        if u <= last:
            return SyncResult("stale", f"u={u} last={last}"), False

        if phase is SyncPhase.BUFFERING:
            if U > last + 1:
                return self._desync(SequenceGapError(last + 1, U, u, reason="bridge_impossible")), True
        elif U != last + 1:
            # Once synced every event must start right after the last one applied.
            return self._desync(SequenceGapError(last + 1, U, u, reason="gap")), True

        self._state.last_applied_id = u
        if phase is SyncPhase.BUFFERING:
            self._set_phase(SyncPhase.SYNCED, f"bridged U={U} u={u}")
            return SyncResult("synced", f"lastUpdateId={u}"), True
        return SyncResult("applied", f"lastUpdateId={u}"), False

    def apply_side(self, side: Side, deltas: Iterable[PriceLevel]) -> None:
        book = self.book(side)
        for level in deltas:
            book.upsert(level.price, level.qty)
            self._mirror(side, level.price, level.qty)

    def apply_diff(self, ev: DiffEvent) -> SyncResult:
        result = self.admit(ev)
        if result.accepted:
            if ev.bids:
                self.apply_side(Side.BID, ev.bids)
            if ev.asks:
                self.apply_side(Side.ASK, ev.asks)
        return result

    def _mirror(self, side: Side, price, qty) -> None:
        if self.store is None:
            return
        try:
            if qty == 0:
                self.store.remove(self.instrument, side, price)
            else:
                self.store.persist(self.instrument, side, price, qty)
        except StoreWriteError:
            self._log.warning(
                "Store write failed instrument=%s side=%s price=%s", self.instrument, side.value, price
            )
