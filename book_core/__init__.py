"""Order book data structures and snapshot/diff synchronization logic."""

from .errors import (
    BookSyncError,
    DesyncedError,
    InvalidInstrumentError,
    ParseError,
    SequenceGapError,
    SnapshotError,
    SnapshotNetworkError,
    SnapshotRateLimitedError,
    StoreWriteError,
    TransportError,
)
from .price_levels import PriceLevelSet
from .sync_engine import OrderBookSynchronizer
from .types import (
    DiffEvent,
    PriceLevel,
    Side,
    Snapshot,
    SyncPhase,
    SyncResult,
    SyncState,
    canonical_price,
    to_decimal,
)

__all__ = [
    "BookSyncError",
    "DesyncedError",
    "DiffEvent",
    "InvalidInstrumentError",
    "OrderBookSynchronizer",
    "ParseError",
    "PriceLevel",
    "PriceLevelSet",
    "SequenceGapError",
    "Side",
    "Snapshot",
    "SnapshotError",
    "SnapshotNetworkError",
    "SnapshotRateLimitedError",
    "StoreWriteError",
    "SyncPhase",
    "SyncResult",
    "SyncState",
    "TransportError",
    "canonical_price",
    "to_decimal",
]
