from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from book_core.errors import ParseError
from book_core.types import DiffEvent, PriceLevel, Snapshot

DEPTH_EVENT_TYPE = "depthUpdate"


def normalize_symbol(symbol: str) -> str:
    """Book/store form of a symbol: lower case, as used in stream names and keys."""
    return symbol.strip().lower()


def rest_symbol(symbol: str) -> str:
    return symbol.strip().upper()


def ws_url(base_url: str, symbol: str, update_speed: str = "") -> str:
    stream = f"{normalize_symbol(symbol)}@depth"
    if update_speed:
        stream = f"{stream}@{update_speed}"
    return f"{base_url.rstrip('/')}/{stream}"


def _decimal(raw, what: str) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        raise ParseError(f"{what} is not a decimal: {raw!r}")
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ParseError(f"{what} is not a decimal: {raw!r}") from exc
    if not value.is_finite() or value < 0:
        raise ParseError(f"{what} must be a finite non-negative decimal: {raw!r}")
    return value


def parse_levels(raw, label: str) -> Tuple[PriceLevel, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ParseError(f"{label} must be a list (got {type(raw).__name__})")
    levels = []
    for item in raw:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise ParseError(f"{label} item must be [price, quantity]: {item!r}")
        levels.append(PriceLevel(_decimal(item[0], "price"), _decimal(item[1], "quantity")))
    return tuple(levels)


def _int(data: dict, key: str) -> int:
    if key not in data:
        raise ParseError(f"depth event missing {key!r}")
    raw = data[key]
    if isinstance(raw, bool):
        raise ParseError(f"{key!r} must be an integer: {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"{key!r} must be an integer: {raw!r}") from exc


def parse_depth_message(raw: Any, instrument: str) -> Optional[DiffEvent]:
    """Parse one WS message into a DiffEvent.

    Returns None for messages that are not depth updates (subscription acks and
    the like). Raises ParseError when a depth update is malformed.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid JSON: {exc}") from exc
    else:
        payload = raw

    if not isinstance(payload, dict):
        raise ParseError(f"message must be a JSON object (got {type(payload).__name__})")

    # Combined streams wrap the event: {"stream": "...", "data": {...}}
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        raise ParseError("message data must be a JSON object")
    if data.get("e") != DEPTH_EVENT_TYPE:
        return None

    symbol = data.get("s")
    if symbol is not None and normalize_symbol(str(symbol)) != normalize_symbol(instrument):
        raise ParseError(f"symbol {symbol!r} does not match {instrument!r}")

    first = _int(data, "U")
    final = _int(data, "u")
    if first > final:
        raise ParseError(f"U={first} greater than u={final}")

    event_time = data.get("E", 0)
    try:
        event_time_ms = int(event_time)
    except (TypeError, ValueError):
        event_time_ms = 0

    return DiffEvent(
        instrument=normalize_symbol(instrument),
        first_update_id=first,
        final_update_id=final,
        bids=parse_levels(data.get("b"), "b"),
        asks=parse_levels(data.get("a"), "a"),
        event_time_ms=event_time_ms,
        event_type=DEPTH_EVENT_TYPE,
    )


def parse_snapshot_payload(snap: Any, instrument: str) -> Snapshot:
    """Validate a /api/v3/depth response. Raises ValueError on a bad payload."""
    if not isinstance(snap, dict):
        raise ValueError("snapshot payload must be a dict")
    if "bids" not in snap or "asks" not in snap or "lastUpdateId" not in snap:
        raise ValueError("snapshot payload missing required keys")
    bids = snap.get("bids")
    asks = snap.get("asks")
    if not isinstance(bids, list) or not isinstance(asks, list):
        raise ValueError("snapshot bids/asks must be lists")
    try:
        last_update_id = int(snap.get("lastUpdateId"))
    except (TypeError, ValueError) as exc:
        raise ValueError("snapshot lastUpdateId must be int-like") from exc
    try:
        return Snapshot(
            instrument=normalize_symbol(instrument),
            last_update_id=last_update_id,
            bids=parse_levels(bids, "bids"),
            asks=parse_levels(asks, "asks"),
        )
    except ParseError as exc:
        raise ValueError(f"snapshot levels invalid: {exc}") from exc
