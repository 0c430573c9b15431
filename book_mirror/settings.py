from __future__ import annotations

import os
from dataclasses import dataclass


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


DEFAULT_SYMBOL = "ethbtc"
DEFAULT_REDIS_HOST = "localhost:6379"
DEFAULT_REDIS_PORT = 6379
BINANCE_WS_BASE_URL = "wss://stream.binance.com:9443/ws"
BINANCE_REST_BASE_URL = "https://api.binance.com"


def parse_host_port(value: str, default_port: int = DEFAULT_REDIS_PORT) -> tuple[str, int]:
    """Split "host:port"; a missing or unparsable port falls back to the default."""
    value = (value or "").strip() or DEFAULT_REDIS_HOST
    host, sep, port_raw = value.rpartition(":")
    if not sep:
        return value, default_port
    try:
        port = int(port_raw)
    except ValueError:
        return value, default_port
    return host or "localhost", port


@dataclass(frozen=True)
class MirrorSettings:
    symbol: str = DEFAULT_SYMBOL

    # Store
    redis_host: str = DEFAULT_REDIS_HOST
    redis_password: str = ""
    redis_db: int = 0
    store_retries: int = 1

    # Dispatch
    dispatch_queue_size: int = 500
    max_buffer_size: int = 10_000

    # Snapshot
    rest_base_url: str = BINANCE_REST_BASE_URL
    snapshot_limit: int = 1000
    snapshot_timeout_s: float = 10.0
    snapshot_retry_max: int = 3
    snapshot_retry_backoff_s: float = 0.5
    snapshot_retry_backoff_max_s: float = 5.0

    # Stream
    ws_base_url: str = BINANCE_WS_BASE_URL
    ws_update_speed: str = ""
    ws_open_timeout_s: float = 10.0
    ws_ping_interval_s: int = 20
    ws_ping_timeout_s: int = 60
    insecure_tls: bool = False

    # Owner loop
    resync_backoff_s: float = 1.0
    resync_backoff_max_s: float = 30.0
    max_resyncs: int = 0

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    @property
    def redis_address(self) -> tuple[str, int]:
        return parse_host_port(self.redis_host)


def load_settings(symbol: str | None = None) -> MirrorSettings:
    """Read settings from the environment; unset or invalid values keep their defaults."""
    d = MirrorSettings()
    return MirrorSettings(
        symbol=(symbol or _env_str("SYMBOL", d.symbol)).strip().lower(),
        redis_host=_env_str("REDIS_HOST", d.redis_host),
        redis_password=os.getenv("REDIS_PASSWORD", d.redis_password),
        redis_db=max(0, _env_int("REDIS_DB", d.redis_db)),
        store_retries=max(0, _env_int("STORE_RETRIES", d.store_retries)),
        dispatch_queue_size=max(1, _env_int("DISPATCH_QUEUE_SIZE", d.dispatch_queue_size)),
        max_buffer_size=max(1, _env_int("MAX_BUFFER_SIZE", d.max_buffer_size)),
        rest_base_url=_env_str("BINANCE_REST_BASE_URL", d.rest_base_url),
        snapshot_limit=max(1, _env_int("SNAPSHOT_LIMIT", d.snapshot_limit)),
        snapshot_timeout_s=max(0.1, _env_float("SNAPSHOT_TIMEOUT_S", d.snapshot_timeout_s)),
        snapshot_retry_max=max(1, _env_int("SNAPSHOT_RETRY_MAX", d.snapshot_retry_max)),
        snapshot_retry_backoff_s=max(0.0, _env_float("SNAPSHOT_RETRY_BACKOFF_S", d.snapshot_retry_backoff_s)),
        snapshot_retry_backoff_max_s=max(
            0.0, _env_float("SNAPSHOT_RETRY_BACKOFF_MAX_S", d.snapshot_retry_backoff_max_s)
        ),
        ws_base_url=_env_str("BINANCE_WS_BASE_URL", d.ws_base_url),
        ws_update_speed=_env_str("WS_UPDATE_SPEED", d.ws_update_speed),
        ws_open_timeout_s=max(0.1, _env_float("WS_OPEN_TIMEOUT_S", d.ws_open_timeout_s)),
        ws_ping_interval_s=max(0, _env_int("WS_PING_INTERVAL_S", d.ws_ping_interval_s)),
        ws_ping_timeout_s=max(1, _env_int("WS_PING_TIMEOUT_S", d.ws_ping_timeout_s)),
        insecure_tls=_env_bool("INSECURE_TLS", d.insecure_tls),
        resync_backoff_s=max(0.0, _env_float("RESYNC_BACKOFF_S", d.resync_backoff_s)),
        resync_backoff_max_s=max(0.0, _env_float("RESYNC_BACKOFF_MAX_S", d.resync_backoff_max_s)),
        max_resyncs=max(0, _env_int("MAX_RESYNCS", d.max_resyncs)),
        log_level=_env_str("LOG_LEVEL", d.log_level).upper(),
        log_dir=_env_str("LOG_DIR", d.log_dir),
    )
