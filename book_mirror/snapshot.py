from __future__ import annotations

import logging
import time

import requests

from book_core.errors import (
    InvalidInstrumentError,
    SnapshotError,
    SnapshotNetworkError,
    SnapshotRateLimitedError,
)
from book_core.types import Snapshot

from .exchanges.binance import parse_snapshot_payload, rest_symbol
from .settings import BINANCE_REST_BASE_URL, MirrorSettings

# Binance error code for an unknown symbol.
_INVALID_SYMBOL_CODE = -1121


class BinanceRestClient:
    def __init__(self, base_url: str | None = None, timeout_s: float = 10.0) -> None:
        self.base_url = (base_url or BINANCE_REST_BASE_URL).rstrip("/")
        self.timeout_s = float(timeout_s)
        self.session = requests.Session()

    def get_order_book(self, symbol: str, limit: int) -> dict:
        url = f"{self.base_url}/api/v3/depth"
        resp = self.session.get(url, params={"symbol": symbol, "limit": limit}, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp.json()


def _classify_http_error(exc: requests.HTTPError, symbol: str) -> SnapshotError:
    resp = exc.response
    status = getattr(resp, "status_code", None)
    if status in (418, 429):
        retry_after = resp.headers.get("Retry-After") if resp is not None else None
        return SnapshotRateLimitedError(f"snapshot rate limited (HTTP {status}, retry-after={retry_after})")
    if status == 400:
        code = None
        try:
            code = resp.json().get("code")
        except ValueError:
            pass
        if code == _INVALID_SYMBOL_CODE:
            return InvalidInstrumentError(f"invalid symbol {symbol!r}")
    return SnapshotNetworkError(f"snapshot HTTP error {status}: {exc}")


class BinanceSnapshotLoader:
    """Fetches /api/v3/depth snapshots.

    Network failures are retried a bounded number of times with doubling backoff.
    Rate limiting and unknown symbols are raised immediately.
    """

    def __init__(
        self,
        client: BinanceRestClient | None = None,
        limit: int = 1000,
        retry_max: int = 3,
        backoff_s: float = 0.5,
        backoff_max_s: float = 5.0,
    ) -> None:
        self.client = client or BinanceRestClient()
        self.limit = int(limit)
        self.retry_max = max(1, int(retry_max))
        self.backoff_s = max(0.0, float(backoff_s))
        self.backoff_max_s = max(self.backoff_s, float(backoff_max_s))
        self._log = logging.getLogger("mirror.snapshot")

    @classmethod
    def from_settings(cls, settings: MirrorSettings) -> "BinanceSnapshotLoader":
        return cls(
            client=BinanceRestClient(settings.rest_base_url, timeout_s=settings.snapshot_timeout_s),
            limit=settings.snapshot_limit,
            retry_max=settings.snapshot_retry_max,
            backoff_s=settings.snapshot_retry_backoff_s,
            backoff_max_s=settings.snapshot_retry_backoff_max_s,
        )

    def _fetch_once(self, symbol: str) -> dict:
        try:
            return self.client.get_order_book(symbol=symbol, limit=self.limit)
        except requests.HTTPError as exc:
            raise _classify_http_error(exc, symbol) from exc
        except requests.RequestException as exc:
            raise SnapshotNetworkError(f"snapshot request failed: {exc}") from exc

    def fetch_snapshot(self, instrument: str) -> Snapshot:
        symbol = rest_symbol(instrument)
        delay = self.backoff_s
        for attempt in range(1, self.retry_max + 1):
            try:
                payload = self._fetch_once(symbol)
                break
            except SnapshotNetworkError as exc:
                if attempt >= self.retry_max:
                    raise
                self._log.warning(
                    "Snapshot %s attempt %d/%d failed: %s", symbol, attempt, self.retry_max, exc
                )
                if delay > 0:
                    time.sleep(delay)
                    delay = min(self.backoff_max_s, delay * 2)

        try:
            snapshot = parse_snapshot_payload(payload, instrument)
        except ValueError as exc:
            raise SnapshotNetworkError(f"invalid snapshot payload: {exc}") from exc
        self._log.info(
            "Snapshot %s lastUpdateId=%d bids=%d asks=%d",
            symbol,
            snapshot.last_update_id,
            len(snapshot.bids),
            len(snapshot.asks),
        )
        return snapshot
