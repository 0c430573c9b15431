from __future__ import annotations

from typing import Optional


class BookSyncError(Exception):
    """Base class for order book synchronization failures."""


class TransportError(BookSyncError):
    """Diff stream could not be dialed or was lost. The session must re-seed."""


class ParseError(BookSyncError):
    """A single diff payload was malformed and has been skipped."""


class SequenceGapError(BookSyncError):
    def __init__(
        self,
        expected: Optional[int],
        first_update_id: Optional[int] = None,
        final_update_id: Optional[int] = None,
        reason: str = "gap",
    ) -> None:
        self.expected = expected
        self.first_update_id = first_update_id
        self.final_update_id = final_update_id
        self.reason = reason
        super().__init__(
            f"{reason}: expected={expected} U={first_update_id} u={final_update_id}"
        )


class DesyncedError(BookSyncError):
    """The book left SYNCED for a reason other than a sequence gap."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"book desynchronized: {reason}")


class StoreWriteError(BookSyncError):
    """Store backend rejected or failed a write."""


class SnapshotError(BookSyncError):
    """Snapshot could not be fetched."""


class SnapshotNetworkError(SnapshotError):
    pass


class SnapshotRateLimitedError(SnapshotError):
    pass


class InvalidInstrumentError(SnapshotError):
    pass
