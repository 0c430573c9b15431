import asyncio
import logging
import ssl
import time
from typing import AsyncIterator, Optional

from websockets.asyncio.client import connect as ws_connect  # type: ignore
from websockets.exceptions import ConnectionClosed, WebSocketException  # type: ignore

from book_core.errors import ParseError, TransportError
from book_core.types import DiffEvent

from .exchanges.binance import parse_depth_message, ws_url
from .settings import MirrorSettings


class BinanceDiffStream:
    """One diff-depth websocket connection exposed as an async iterator of DiffEvents.

    There is no reconnect loop: a dial failure or a dropped connection ends the
    iteration with TransportError and the owner has to re-seed with a new stream.
    ``close()`` ends the iteration without an error.
    """

    def __init__(
        self,
        ws_url: str,
        instrument: str,
        open_timeout_s: float = 10.0,
        ping_interval_s: int = 20,
        ping_timeout_s: int = 60,
        max_queue: int = 256,
        insecure_tls: bool = False,
    ):
        self.ws_url = ws_url
        self.instrument = instrument
        self.open_timeout_s = max(0.1, float(open_timeout_s))
        self.ping_interval_s = max(0, int(ping_interval_s))
        self.ping_timeout_s = max(1, int(ping_timeout_s))
        self.max_queue = max(1, int(max_queue))
        self.insecure_tls = insecure_tls

        self.messages = 0
        self.parse_errors = 0
        self.last_msg_time: Optional[float] = None

        self._ws = None
        self._stop = False
        self._used = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._close_task: Optional[asyncio.Task] = None
        self._log = logging.getLogger("mirror.websocket")

    @classmethod
    def from_settings(cls, settings: MirrorSettings, instrument: str) -> "BinanceDiffStream":
        return cls(
            ws_url=ws_url(settings.ws_base_url, instrument, settings.ws_update_speed),
            instrument=instrument,
            open_timeout_s=settings.ws_open_timeout_s,
            ping_interval_s=settings.ws_ping_interval_s,
            ping_timeout_s=settings.ws_ping_timeout_s,
            max_queue=settings.dispatch_queue_size,
            insecure_tls=settings.insecure_tls,
        )

    @property
    def closed(self) -> bool:
        return self._stop

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.insecure_tls:
            return None
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    async def connect(self) -> None:
        """Dial the stream within open_timeout_s. Raises TransportError on failure."""
        if self._ws is not None:
            return
        self._loop = asyncio.get_running_loop()
        connect_kwargs = {
            "open_timeout": self.open_timeout_s,
            "ping_interval": self.ping_interval_s or None,
            "ping_timeout": self.ping_timeout_s,
            "close_timeout": 5,
            "max_queue": self.max_queue,
        }
        ssl_ctx = self._ssl_context()
        if ssl_ctx is not None:
            connect_kwargs["ssl"] = ssl_ctx
        try:
            self._ws = await asyncio.wait_for(
                ws_connect(self.ws_url, **connect_kwargs), timeout=self.open_timeout_s
            )
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise TransportError(f"dial {self.ws_url} timed out after {self.open_timeout_s}s") from exc
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"dial {self.ws_url} failed: {exc}") from exc
        self._log.info("Dialed: %s", self.ws_url)

    def __aiter__(self) -> AsyncIterator[DiffEvent]:
        if self._used:
            raise RuntimeError("BinanceDiffStream is not restartable; create a new stream.")
        self._used = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[DiffEvent]:
        if self._stop:
            return
        await self.connect()
        try:
            while not self._stop:
                try:
                    msg = await self._ws.recv()
                except ConnectionClosed as exc:
                    if self._stop:
                        return
                    raise TransportError(f"stream closed: {exc}") from exc
                except (OSError, WebSocketException) as exc:
                    if self._stop:
                        return
                    raise TransportError(f"stream read failed: {exc}") from exc

                self.messages += 1
                self.last_msg_time = time.monotonic()
                try:
                    ev = parse_depth_message(msg, self.instrument)
                except ParseError as exc:
                    self.parse_errors += 1
                    self._log.warning("Skipping malformed depth message: %s", exc)
                    continue
                if ev is not None:
                    yield ev
        finally:
            await self._close_ws()

    async def _close_ws(self) -> None:
        ws, self._ws = self._ws, None
        task, self._close_task = self._close_task, None
        if ws is None:
            return
        try:
            if task is not None:
                await task
            else:
                await ws.close()
        except Exception:
            self._log.exception("Failed to close websocket %s", self.ws_url)

    def close(self) -> None:
        """Stop the stream; safe to call from any thread or from the event loop."""
        self._stop = True
        ws = self._ws
        if ws is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and loop is self._loop:
            if self._close_task is None:
                self._close_task = loop.create_task(ws.close(), name=f"ws-close-{self.instrument}")
            return
        if self._loop is not None and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(ws.close(), self._loop)
