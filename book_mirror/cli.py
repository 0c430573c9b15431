from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from book_core.sync_engine import OrderBookSynchronizer

from .exchanges.binance import normalize_symbol
from .logging_config import setup_logging
from .session import MirrorSession, run_forever
from .settings import load_settings
from .snapshot import BinanceSnapshotLoader
from .store import BookStore, RedisStoreSink
from .ws_stream import BinanceDiffStream


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="depth-mirror",
        description="Keep a Binance order book in sync and mirror it into Redis.",
    )
    parser.add_argument(
        "symbol",
        nargs="?",
        default=None,
        help="Instrument to track, e.g. ethbtc (default: $SYMBOL or ethbtc)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    settings = load_settings(normalize_symbol(args.symbol) if args.symbol else None)
    symbol = settings.symbol

    log_path = setup_logging(settings.log_level, component="mirror", subdir=symbol, base_dir=settings.log_dir)
    log = logging.getLogger("mirror.main")
    log.info("Mirror logging to %s", log_path)
    host, port = settings.redis_address
    log.info(
        "Mirror config symbol=%s redis=%s:%d db=%d auth=%s queue=%d snapshot_limit=%d max_resyncs=%d",
        symbol,
        host,
        port,
        settings.redis_db,
        "yes" if settings.redis_password else "no",
        settings.dispatch_queue_size,
        settings.snapshot_limit,
        settings.max_resyncs,
    )

    sink = RedisStoreSink.from_settings(settings)
    store = BookStore(sink, retries=settings.store_retries)
    synchronizer = OrderBookSynchronizer(symbol, store=store, max_buffer_size=settings.max_buffer_size)
    session = MirrorSession(
        synchronizer,
        loader=BinanceSnapshotLoader.from_settings(settings),
        stream_factory=lambda: BinanceDiffStream.from_settings(settings, symbol),
        store=store,
        queue_size=settings.dispatch_queue_size,
    )

    try:
        resyncs = asyncio.run(
            run_forever(
                session,
                max_resyncs=settings.max_resyncs,
                backoff_s=settings.resync_backoff_s,
                backoff_max_s=settings.resync_backoff_max_s,
            )
        )
        log.info("Mirror stopped (resyncs=%d)", resyncs)
    except KeyboardInterrupt:
        log.info("Interrupted; mirror stopped phase=%s", synchronizer.phase.value)
    except Exception:
        # Surface the traceback in the log file as well as stderr.
        log.exception("Mirror crashed")
        raise
    finally:
        sink.close()
    return 0
