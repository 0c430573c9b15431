"""Binance diff-depth collaborators and the process that mirrors the book into Redis."""

from .dispatcher import Dispatcher
from .session import MirrorSession, run_forever
from .settings import MirrorSettings, load_settings
from .snapshot import BinanceRestClient, BinanceSnapshotLoader
from .store import BookStore, MemoryStoreSink, RedisStoreSink, StoreSink
from .ws_stream import BinanceDiffStream

__all__ = [
    "BinanceDiffStream",
    "BinanceRestClient",
    "BinanceSnapshotLoader",
    "BookStore",
    "Dispatcher",
    "MemoryStoreSink",
    "MirrorSession",
    "MirrorSettings",
    "RedisStoreSink",
    "StoreSink",
    "load_settings",
    "run_forever",
]
