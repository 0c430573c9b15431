from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Tuple


class Side(str, Enum):
    BID = "bids"
    ASK = "asks"


class SyncPhase(str, Enum):
    SEEDING = "seeding"
    BUFFERING = "buffering"
    SYNCED = "synced"
    DESYNCED = "desynced"


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a decimal number: {value!r}") from exc


def canonical_price(value) -> str:
    """Fixed-point text without exponent or trailing zeros ("10.00" -> "10")."""
    d = to_decimal(value)
    if d == 0:
        return "0"
    return format(d.normalize(), "f")


@dataclass(frozen=True)
class PriceLevel:
    price: Decimal
    qty: Decimal


@dataclass(frozen=True)
class Snapshot:
    instrument: str
    last_update_id: int
    bids: Tuple[PriceLevel, ...] = ()
    asks: Tuple[PriceLevel, ...] = ()


@dataclass(frozen=True)
class DiffEvent:
    instrument: str
    first_update_id: int
    final_update_id: int
    bids: Tuple[PriceLevel, ...] = ()
    asks: Tuple[PriceLevel, ...] = ()
    event_time_ms: int = 0
    event_type: str = "depthUpdate"

    def __post_init__(self) -> None:
        if self.first_update_id > self.final_update_id:
            raise ValueError(
                f"first_update_id {self.first_update_id} > final_update_id {self.final_update_id}"
            )

    def deltas(self, side: Side) -> Tuple[PriceLevel, ...]:
        return self.bids if side is Side.BID else self.asks


@dataclass
class SyncState:
    last_applied_id: Optional[int] = None
    phase: SyncPhase = SyncPhase.SEEDING
    reason: str = ""


@dataclass
class SyncResult:
    action: str  # "buffered" | "stale" | "synced" | "applied" | "gap" | "ignored"
    details: str = ""

    @property
    def accepted(self) -> bool:
        return self.action in ("synced", "applied")
