from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Tuple

from redis import Redis, RedisError

from book_core.errors import StoreWriteError
from book_core.types import Side, SyncState, canonical_price

from .settings import MirrorSettings


def hash_key(instrument: str, side: Side | str) -> str:
    """Store key for one side of one instrument, e.g. ``ethbtc-bids``."""
    return f"{instrument}-{Side(side).value}"


def status_key(instrument: str) -> str:
    return f"{instrument}-status"


class StoreSink(Protocol):
    def upsert(self, key: str, field: str, value: str) -> None: ...

    def delete(self, key: str, field: str) -> None: ...


class RedisStoreSink:
    """Hash-per-side sink: HSET/HDEL on ``<instrument>-<side>``."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: MirrorSettings) -> "RedisStoreSink":
        host, port = settings.redis_address
        client = Redis(
            host=host,
            port=port,
            db=settings.redis_db,
            password=settings.redis_password or None,
            decode_responses=True,
        )
        return cls(client)

    def upsert(self, key: str, field: str, value: str) -> None:
        try:
            self._client.hset(key, field, value)
        except RedisError as exc:
            raise StoreWriteError(f"HSET {key} {field} failed: {exc}") from exc

    def delete(self, key: str, field: str) -> None:
        try:
            self._client.hdel(key, field)
        except RedisError as exc:
            raise StoreWriteError(f"HDEL {key} {field} failed: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError as exc:
            raise StoreWriteError(f"PING failed: {exc}") from exc

    def close(self) -> None:
        self._client.close()


class MemoryStoreSink:
    """In-process sink used by tests and dry runs. Keeps a log of every call."""

    def __init__(self) -> None:
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.calls: List[Tuple[str, str, str, Optional[str]]] = []

    def upsert(self, key: str, field: str, value: str) -> None:
        self.calls.append(("upsert", key, field, value))
        self.hashes.setdefault(key, {})[field] = value

    def delete(self, key: str, field: str) -> None:
        self.calls.append(("delete", key, field, None))
        h = self.hashes.get(key)
        if h is not None:
            h.pop(field, None)
            if not h:
                del self.hashes[key]

    def get(self, key: str) -> Dict[str, str]:
        return dict(self.hashes.get(key, {}))


class BookStore:
    """Mirrors price levels into a StoreSink.

    The in-memory book leads and the store follows: a failed write is retried
    ``retries`` times immediately, then logged and dropped. Nothing is raised to
    the caller, so a sick store never stalls or rewinds synchronization.
    """

    def __init__(self, sink: StoreSink, retries: int = 1) -> None:
        self.sink = sink
        self.retries = max(0, int(retries))
        self.failed_writes = 0
        self.dropped_writes = 0
        self._log = logging.getLogger("mirror.store")

    def _call(self, op: str, fn, *args) -> bool:
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                fn(*args)
                return True
            except StoreWriteError as exc:
                self.failed_writes += 1
                if attempt < attempts:
                    self._log.debug("Store %s failed (attempt %d), retrying: %s", op, attempt, exc)
                    continue
                self.dropped_writes += 1
                self._log.warning("Store %s dropped after %d attempts: %s", op, attempts, exc)
        return False

    def persist(self, instrument: str, side: Side, price, qty) -> bool:
        return self._call(
            "persist",
            self.sink.upsert,
            hash_key(instrument, side),
            canonical_price(price),
            canonical_price(qty),
        )

    def remove(self, instrument: str, side: Side, price) -> bool:
        return self._call(
            "remove",
            self.sink.delete,
            hash_key(instrument, side),
            canonical_price(price),
        )

    def publish_status(self, instrument: str, state: SyncState) -> bool:
        key = status_key(instrument)
        last = "" if state.last_applied_id is None else str(state.last_applied_id)
        ok = self._call("status", self.sink.upsert, key, "phase", state.phase.value)
        ok = self._call("status", self.sink.upsert, key, "lastUpdateId", last) and ok
        ok = self._call("status", self.sink.upsert, key, "reason", state.reason or "") and ok
        return ok
