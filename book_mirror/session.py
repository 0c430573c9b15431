from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from typing import Callable, Optional

from book_core.errors import (
    DesyncedError,
    InvalidInstrumentError,
    SequenceGapError,
    SnapshotError,
    SnapshotNetworkError,
    SnapshotRateLimitedError,
    TransportError,
)
from book_core.sync_engine import OrderBookSynchronizer
from book_core.types import SyncState

from .dispatcher import Dispatcher
from .store import BookStore

RECOVERABLE_ERRORS = (
    SequenceGapError,
    DesyncedError,
    TransportError,
    SnapshotNetworkError,
    SnapshotRateLimitedError,
)


class MirrorSession:
    """One synchronization session: dial, snapshot, seed, then follow the stream.

    The stream is dialed before the snapshot is requested so no diff between the
    two is lost; diffs wait in the dispatcher queue until seeding is done. Any
    failure leaves the synchronizer desynced and is raised to the caller. A
    clean end leaves it desynced as well, with reason ``stopped`` or
    ``stream_ended``, so status readers can tell the mirror is no longer live.
    """

    def __init__(
        self,
        synchronizer: OrderBookSynchronizer,
        loader,
        stream_factory: Callable[[], object],
        store: Optional[BookStore] = None,
        queue_size: int = 500,
    ) -> None:
        self.synchronizer = synchronizer
        self.loader = loader
        self.stream_factory = stream_factory
        self.store = store
        self.queue_size = queue_size
        self.dispatcher: Optional[Dispatcher] = None
        self.runs = 0
        self._stream = None
        self._stopped = False
        self._log = logging.getLogger("mirror.session")
        if store is not None:
            synchronizer.on_phase_change = self._publish_status

    @property
    def instrument(self) -> str:
        return self.synchronizer.instrument

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _publish_status(self, state: SyncState) -> None:
        if self.store is not None:
            self.store.publish_status(self.instrument, state)

    def stop(self) -> None:
        """Close the diff source; queued events are applied before run() returns."""
        self._stopped = True
        if self._stream is not None:
            self._stream.close()

    async def run(self) -> None:
        sync = self.synchronizer
        self.runs += 1
        sync.reset()
        stream = self.stream_factory()
        self._stream = stream
        dispatcher = Dispatcher(sync, queue_size=self.queue_size)
        self.dispatcher = dispatcher
        pump: Optional[asyncio.Task] = None
        try:
            if self._stopped:
                return
            try:
                await stream.connect()
            except TransportError:
                sync.mark_desynced("dial_failed")
                raise
            pump = asyncio.create_task(dispatcher.pump(stream), name=f"pump-{self.instrument}")

            try:
                snapshot = await asyncio.to_thread(self.loader.fetch_snapshot, self.instrument)
            except SnapshotError as exc:
                sync.mark_desynced(f"snapshot_failed: {type(exc).__name__}")
                raise
            if pump.done():
                # Stream already failed or was stopped while the snapshot was in flight.
                await pump
                if self._stopped:
                    return
            await asyncio.to_thread(sync.seed, snapshot)

            await dispatcher.run()
            await pump
        except asyncio.CancelledError:
            sync.mark_desynced("cancelled")
            raise
        except Exception as exc:
            sync.mark_desynced(f"session_failed: {type(exc).__name__}")
            raise
        finally:
            stream.close()
            if pump is not None:
                if not pump.done():
                    pump.cancel()
                with contextlib.suppress(asyncio.CancelledError, TransportError):
                    await pump
            self._stream = None
            # Nothing maintains the mirror past this point. Failures already set their own reason.
            sync.mark_desynced("stopped" if self._stopped else "stream_ended")
            # Phase changes publish as they happen; this records the final lastUpdateId.
            self._publish_status(sync.state)
            self._log.info(
                "Session %s ended phase=%s lastUpdateId=%s admitted=%d discarded=%d",
                self.instrument,
                sync.phase.value,
                sync.last_applied_id,
                dispatcher.admitted,
                dispatcher.discarded,
            )


async def run_forever(
    session: MirrorSession,
    max_resyncs: int = 0,
    backoff_s: float = 1.0,
    backoff_max_s: float = 30.0,
) -> int:
    """Run sessions back to back, re-seeding after every recoverable failure.

    Returns the number of re-seeds performed. InvalidInstrumentError and
    unexpected errors are raised. ``max_resyncs`` of 0 means no limit.
    """
    log = logging.getLogger("mirror.session")
    resyncs = 0
    failures = 0
    while True:
        try:
            await session.run()
            return resyncs
        except InvalidInstrumentError:
            raise
        except RECOVERABLE_ERRORS as exc:
            if session.stopped:
                return resyncs
            # Back off from scratch when the failed session had been following the stream.
            followed = session.dispatcher is not None and session.dispatcher.admitted > 0
            failures = 1 if followed else failures + 1
            resyncs += 1
            if max_resyncs and resyncs > max_resyncs:
                log.error("Giving up on %s after %d re-seeds", session.instrument, resyncs - 1)
                raise

            if backoff_s <= 0.0 or backoff_max_s <= 0.0:
                backoff = 0.0
            else:
                backoff = min(backoff_max_s, backoff_s * (2 ** max(0, failures - 1)))
                backoff = backoff * (0.7 + 0.6 * random.random())
            log.error(
                "Session %s failed (%s: %s); re-seeding in %.1fs (resync=%d phase=%s)",
                session.instrument,
                type(exc).__name__,
                exc,
                backoff,
                resyncs,
                session.synchronizer.phase.value,
            )
            await asyncio.sleep(backoff)
            if session.stopped:
                return resyncs
