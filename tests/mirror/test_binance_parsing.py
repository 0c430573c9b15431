from __future__ import annotations

import json
from decimal import Decimal

import pytest

from book_core.errors import ParseError
from book_core.types import PriceLevel
from book_mirror.exchanges.binance import parse_depth_message, parse_snapshot_payload, ws_url


def _depth(**overrides) -> dict:
    msg = {
        "e": "depthUpdate",
        "E": 1700000000000,
        "s": "ETHBTC",
        "U": 157,
        "u": 160,
        "b": [["0.0024", "10"]],
        "a": [["0.0026", "100"], ["0.0027", "0.00000000"]],
    }
    msg.update(overrides)
    return msg


def test_parse_depth_update_text():
    ev = parse_depth_message(json.dumps(_depth()), "ethbtc")

    assert ev.instrument == "ethbtc"
    assert (ev.first_update_id, ev.final_update_id) == (157, 160)
    assert ev.event_time_ms == 1700000000000
    assert ev.bids == (PriceLevel(Decimal("0.0024"), Decimal("10")),)
    assert ev.asks[1].qty == 0


def test_parse_combined_stream_envelope_and_bytes():
    raw = json.dumps({"stream": "ethbtc@depth", "data": _depth()}).encode()
    ev = parse_depth_message(raw, "ETHBTC")
    assert ev.final_update_id == 160


def test_non_depth_messages_are_ignored():
    assert parse_depth_message('{"result": null, "id": 1}', "ethbtc") is None
    assert parse_depth_message({"e": "trade", "s": "ETHBTC"}, "ethbtc") is None


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2]",
        _depth(U=None),
        {k: v for k, v in _depth().items() if k != "U"},
        _depth(U=161, u=160),
        _depth(b="nope"),
        _depth(b=[["0.1"]]),
        _depth(a=[["abc", "1"]]),
        _depth(a=[["0.1", "-1"]]),
        _depth(s="BTCUSDT"),
    ],
)
def test_malformed_depth_updates_raise_parse_error(raw):
    with pytest.raises(ParseError):
        parse_depth_message(raw, "ethbtc")


def test_parse_snapshot_payload():
    snap = parse_snapshot_payload(
        {"lastUpdateId": 1027024, "bids": [["4.00000000", "431.00000000"]], "asks": [["4.00000200", "12.00000000"]]},
        "ETHBTC",
    )
    assert snap.instrument == "ethbtc"
    assert snap.last_update_id == 1027024
    assert snap.bids[0].price == Decimal("4")
    assert snap.asks[0].qty == Decimal("12")


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"bids": [], "asks": []},
        {"lastUpdateId": "x", "bids": [], "asks": []},
        {"lastUpdateId": 1, "bids": {}, "asks": []},
        {"lastUpdateId": 1, "bids": [["1", "x"]], "asks": []},
    ],
)
def test_invalid_snapshot_payload(payload):
    with pytest.raises(ValueError):
        parse_snapshot_payload(payload, "ethbtc")


def test_ws_url_uses_lower_case_stream_name():
    assert ws_url("wss://stream.binance.com:9443/ws/", "ETHBTC") == "wss://stream.binance.com:9443/ws/ethbtc@depth"
    assert ws_url("wss://x/ws", "ethbtc", "100ms") == "wss://x/ws/ethbtc@depth@100ms"
