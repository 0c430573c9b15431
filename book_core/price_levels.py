from __future__ import annotations

from decimal import Decimal
from itertools import islice
from typing import Iterator, List, Optional

from sortedcontainers import SortedDict

from .types import PriceLevel, Side, to_decimal


class PriceLevelSet:
    """One side of one instrument's book: price -> quantity, both Decimal.

    Levels are kept sorted by price. A zero quantity is never stored; it removes
    the level. Reads return copies, never live views.
    """

    def __init__(self, side: Side) -> None:
        self.side = Side(side)
        self._levels: SortedDict = SortedDict()

    def upsert(self, price, qty) -> None:
        p = to_decimal(price)
        q = to_decimal(qty)
        if not (p.is_finite() and q.is_finite()) or p < 0 or q < 0:
            raise ValueError(f"level must be finite and non-negative: price={price!r} qty={qty!r}")
        if q == 0:
            self._levels.pop(p, None)
        else:
            self._levels[p] = q

    def remove(self, price) -> bool:
        return self._levels.pop(to_decimal(price), None) is not None

    def get(self, price) -> Optional[Decimal]:
        return self._levels.get(to_decimal(price))

    def clear(self) -> None:
        self._levels.clear()

    def prices(self) -> List[Decimal]:
        return list(self._levels.keys())

    def _iter_best_first(self) -> Iterator[PriceLevel]:
        items = self._levels.items()
        if self.side is Side.BID:
            items = reversed(items)
        for price, qty in items:
            yield PriceLevel(price, qty)

    def snapshot(self) -> List[PriceLevel]:
        return list(self._iter_best_first())

    def top_n(self, n: int) -> List[PriceLevel]:
        if n <= 0:
            return []
        return list(islice(self._iter_best_first(), n))

    def best(self) -> Optional[PriceLevel]:
        top = self.top_n(1)
        return top[0] if top else None

    def __len__(self) -> int:
        return len(self._levels)

    def __contains__(self, price) -> bool:
        return to_decimal(price) in self._levels

    def __repr__(self) -> str:
        return f"PriceLevelSet(side={self.side.value}, levels={len(self)})"
