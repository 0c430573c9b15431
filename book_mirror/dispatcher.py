from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterable, Dict, Optional, Sequence

from book_core.errors import BookSyncError, DesyncedError, SequenceGapError, TransportError
from book_core.sync_engine import OrderBookSynchronizer
from book_core.types import DiffEvent, PriceLevel, Side, SyncPhase

_END = object()


class Dispatcher:
    """Fans accepted diffs out to one worker per book side.

    A single consumer admits events in queue order through the synchronizer.
    Accepted bid and ask deltas go to their side's worker, which applies one
    event to completion before taking the next, so each side sees events in
    order and never has two applications in flight. The queue is bounded and
    ``put`` blocks when it is full.
    """

    def __init__(self, synchronizer: OrderBookSynchronizer, queue_size: int = 500) -> None:
        self.synchronizer = synchronizer
        self.queue_size = max(1, int(queue_size))
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._side_queues: Dict[Side, asyncio.Queue] = {
            side: asyncio.Queue(maxsize=self.queue_size) for side in Side
        }
        self.admitted = 0
        self.discarded = 0
        self.applied: Dict[Side, int] = {side: 0 for side in Side}
        self.source_error: Optional[TransportError] = None
        self._log = logging.getLogger("mirror.dispatcher")

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, ev: DiffEvent) -> None:
        await self._queue.put(ev)

    async def close(self) -> None:
        """Signal end of stream; events already queued are still processed."""
        await self._queue.put(_END)

    async def pump(self, source: AsyncIterable[DiffEvent]) -> None:
        """Read the diff source into the queue, then close the dispatcher."""
        try:
            async for ev in source:
                await self.put(ev)
        except TransportError as exc:
            self.source_error = exc
            self.synchronizer.mark_desynced("transport_error")
            self._log.error("Diff stream failed for %s: %s", self.synchronizer.instrument, exc)
            await self.close()
            raise
        await self.close()

    async def _side_worker(self, side: Side, queue: asyncio.Queue) -> None:
        while True:
            deltas = await queue.get()
            if deltas is _END:
                return
            try:
                await asyncio.to_thread(self.synchronizer.apply_side, side, deltas)
                self.applied[side] += 1
            except Exception:
                self._log.exception("Applying %s deltas failed", side.value)
                self.synchronizer.mark_desynced(f"{side.value}_apply_failed")

    async def _hand_off(self, side: Side, deltas: Sequence[PriceLevel]) -> None:
        if deltas:
            await self._side_queues[side].put(deltas)

    async def run(self) -> None:
        """Consume until end of stream.

        Raises SequenceGapError on a gap. When the book was desynced some other
        way (a failed side worker, a dropped stream) the error behind it is
        raised once the workers have drained.
        """
        workers = [
            asyncio.create_task(self._side_worker(side, queue), name=f"apply-{side.value}")
            for side, queue in self._side_queues.items()
        ]
        failure: Optional[BookSyncError] = None
        try:
            while True:
                ev = await self._queue.get()
                if ev is _END:
                    break
                result = self.synchronizer.admit(ev)
                if result.action == "gap":
                    failure = self.synchronizer.error or SequenceGapError(
                        None, ev.first_update_id, ev.final_update_id, reason=result.details
                    )
                    break
                if result.action == "ignored":
                    # Desynced elsewhere; nothing more can be applied.
                    break
                if not result.accepted:
                    self.discarded += 1
                    self._log.debug(
                        "Discarded %s U=%d u=%d (%s)",
                        result.action,
                        ev.first_update_id,
                        ev.final_update_id,
                        result.details,
                    )
                    continue
                self.admitted += 1
                await self._hand_off(Side.BID, ev.bids)
                await self._hand_off(Side.ASK, ev.asks)
        finally:
            # Workers finish everything already handed to them.
            for queue in self._side_queues.values():
                await queue.put(_END)
            await asyncio.gather(*workers)
        if failure is None and self.synchronizer.phase is SyncPhase.DESYNCED:
            failure = self._desync_error()
        if failure is not None:
            raise failure

    def _desync_error(self) -> BookSyncError:
        if self.source_error is not None:
            return self.source_error
        if self.synchronizer.error is not None:
            return self.synchronizer.error
        return DesyncedError(self.synchronizer.state.reason)
