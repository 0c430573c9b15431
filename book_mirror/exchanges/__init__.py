from __future__ import annotations

from .binance import (
    normalize_symbol,
    parse_depth_message,
    parse_snapshot_payload,
    rest_symbol,
    ws_url,
)

__all__ = [
    "normalize_symbol",
    "parse_depth_message",
    "parse_snapshot_payload",
    "rest_symbol",
    "ws_url",
]
