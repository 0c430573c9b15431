from __future__ import annotations

import random
from decimal import Decimal

from book_core.sync_engine import OrderBookSynchronizer
from book_core.types import SyncPhase
from _books import diff, snapshot


def _synced(last: int = 100) -> OrderBookSynchronizer:
    sync = OrderBookSynchronizer("ethbtc")
    sync.seed(snapshot(last, bids=[("10", "1")], asks=[("11", "1")]))
    assert sync.apply_diff(diff(last, last + 1)).action == "synced"
    return sync


def test_contiguous_diffs_apply_in_order():
    sync = _synced()
    assert sync.apply_diff(diff(102, 105, bids=[("10", "2")])).action == "applied"
    assert sync.apply_diff(diff(106, 106, bids=[("9.5", "4")], asks=[("11", "0")])).action == "applied"

    assert sync.last_applied_id == 106
    assert sync.bids.get("10") == Decimal("2")
    assert sync.bids.get("9.5") == Decimal("4")
    assert sync.asks.get("11") is None


def test_reapplying_the_same_event_is_a_noop():
    sync = _synced()
    ev = diff(102, 103, bids=[("10", "7")], asks=[("12", "1")])

    assert sync.apply_diff(ev).action == "applied"
    bids_before = sync.bids.snapshot()
    asks_before = sync.asks.snapshot()

    again = sync.apply_diff(ev)
    assert again.action == "stale"
    assert sync.last_applied_id == 103
    assert sync.bids.snapshot() == bids_before
    assert sync.asks.snapshot() == asks_before


def test_out_of_order_older_event_is_discarded():
    sync = OrderBookSynchronizer("ethbtc")
    sync.seed(snapshot(190))
    assert sync.apply_diff(diff(191, 200, bids=[("10", "2")])).action == "synced"

    r = sync.apply_diff(diff(198, 199, bids=[("10", "99")], asks=[("20", "1")]))
    assert r.action == "stale"
    assert sync.phase is SyncPhase.SYNCED
    assert sync.last_applied_id == 200
    assert sync.bids.get("10") == Decimal("2")
    assert len(sync.asks) == 0


def test_overlapping_event_after_sync_desyncs_without_touching_book():
    sync = OrderBookSynchronizer("ethbtc")
    sync.seed(snapshot(100, bids=[("10", "1")]))
    assert sync.apply_diff(diff(101, 105, bids=[("10", "2")])).action == "synced"

    r = sync.apply_diff(diff(103, 108, bids=[("10", "7")]))

    assert r.action == "gap"
    assert sync.phase is SyncPhase.DESYNCED
    assert sync.state.reason == "gap"
    assert sync.error.expected == 106
    assert sync.last_applied_id == 105
    assert sync.bids.get("10") == Decimal("2")


def test_nothing_applies_after_gap_until_reseed():
    sync = _synced()
    assert sync.apply_diff(diff(105, 106)).action == "gap"

    r = sync.apply_diff(diff(102, 104, bids=[("10", "5")]))
    assert r.action == "ignored"
    assert sync.bids.get("10") == Decimal("1")
    assert sync.last_applied_id == 101

    sync.seed(snapshot(300, bids=[("10", "8")]))
    assert sync.phase is SyncPhase.BUFFERING
    assert sync.error is None
    assert sync.apply_diff(diff(299, 301)).action == "synced"


def test_last_applied_id_tracks_most_recent_accepted_event():
    rng = random.Random(7)
    sync = OrderBookSynchronizer("ethbtc")
    sync.seed(snapshot(1000))

    last_accepted = 1000
    seen = [1000]
    for _ in range(500):
        last = sync.last_applied_id
        roll = rng.random()
        if roll < 0.7:
            first = last + 1 if sync.phase is SyncPhase.SYNCED else rng.randint(last - 3, last + 1)
            final = first + rng.randint(0, 5)
        elif roll < 0.95:
            final = rng.randint(max(0, last - 20), last)
            first = rng.randint(max(0, final - 5), final)
        else:
            first = last + rng.randint(2, 10)
            final = first + rng.randint(0, 5)
        price = str(rng.randint(90, 110))
        qty = str(rng.choice([0, 1, 2, 3]))
        result = sync.apply_diff(diff(first, final, bids=[(price, qty)]))
        if result.accepted:
            last_accepted = final
        seen.append(sync.last_applied_id)
        assert sync.last_applied_id == last_accepted
        if sync.phase is SyncPhase.DESYNCED:
            break

    assert seen == sorted(seen)
