from __future__ import annotations

import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

import book_mirror.ws_stream as ws_mod
from book_core.errors import TransportError


def _depth(U: int, u: int) -> str:
    return json.dumps({"e": "depthUpdate", "E": 1, "s": "ETHBTC", "U": U, "u": u, "b": [["1", "1"]], "a": []})


class _FakeWS:
    """Replays scripted messages, then blocks until closed (or drops if asked)."""

    def __init__(self, messages, drop_at_end: bool = False):
        self.messages = list(messages)
        self.drop_at_end = drop_at_end
        self.close_calls = 0
        self._closed = None

    async def recv(self):
        if self.messages:
            return self.messages.pop(0)
        if self.drop_at_end:
            raise ConnectionClosedError(None, None)
        if self._closed is None:
            self._closed = asyncio.get_running_loop().create_future()
        await self._closed
        raise ConnectionClosedOK(None, None)

    async def close(self):
        self.close_calls += 1
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)


def _install(monkeypatch, ws):
    seen = {}

    async def fake_connect(url, **kwargs):
        seen["url"] = url
        seen.update(kwargs)
        return ws

    monkeypatch.setattr(ws_mod, "ws_connect", fake_connect)
    return seen


def _stream(**kwargs):
    return ws_mod.BinanceDiffStream(ws_url="wss://example/ws/ethbtc@depth", instrument="ethbtc", **kwargs)


def test_stream_yields_depth_events_and_skips_bad_messages(monkeypatch):
    ws = _FakeWS(
        [_depth(1, 2), "{broken", '{"result": null, "id": 1}', _depth(3, 4)],
        drop_at_end=True,
    )
    seen = _install(monkeypatch, ws)
    stream = _stream(open_timeout_s=3, ping_interval_s=0)
    events = []

    async def consume():
        async for ev in stream:
            events.append((ev.first_update_id, ev.final_update_id))

    with pytest.raises(TransportError, match="stream closed"):
        asyncio.run(consume())

    assert events == [(1, 2), (3, 4)]
    assert stream.parse_errors == 1
    assert stream.messages == 4
    assert ws.close_calls == 1
    assert seen["url"] == "wss://example/ws/ethbtc@depth"
    assert seen["open_timeout"] == 3
    assert seen["ping_interval"] is None


def test_close_ends_iteration_without_error(monkeypatch):
    ws = _FakeWS([_depth(1, 2)])
    _install(monkeypatch, ws)
    stream = _stream()
    events = []

    async def consume():
        async for ev in stream:
            events.append(ev.final_update_id)
            stream.close()

    asyncio.run(consume())

    assert events == [2]
    assert stream.closed
    assert ws.close_calls >= 1


def test_close_keeps_its_close_task_until_iteration_finishes(monkeypatch):
    ws = _FakeWS([])
    _install(monkeypatch, ws)
    stream = _stream()

    async def drain():
        return [ev async for ev in stream]

    async def main():
        await stream.connect()
        consumer = asyncio.create_task(drain())
        await asyncio.sleep(0.01)
        stream.close()
        stream.close()
        task = stream._close_task
        assert task is not None
        events = await asyncio.wait_for(consumer, timeout=1)
        return task, events

    task, events = asyncio.run(main())

    assert events == []
    assert task.done()
    assert stream._close_task is None
    assert ws.close_calls == 1


def test_stream_is_not_restartable(monkeypatch):
    _install(monkeypatch, _FakeWS([], drop_at_end=True))
    stream = _stream()

    async def consume():
        async for _ in stream:
            pass

    with pytest.raises(TransportError):
        asyncio.run(consume())
    with pytest.raises(RuntimeError, match="not restartable"):
        stream.__aiter__()


def test_dial_failure_is_transport_error(monkeypatch):
    async def refused(url, **kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(ws_mod, "ws_connect", refused)
    stream = _stream()

    with pytest.raises(TransportError, match="failed"):
        asyncio.run(stream.connect())


def test_dial_timeout_is_transport_error(monkeypatch):
    async def hang(url, **kwargs):
        await asyncio.sleep(10)

    monkeypatch.setattr(ws_mod, "ws_connect", hang)
    stream = _stream(open_timeout_s=0.1)

    with pytest.raises(TransportError, match="timed out"):
        asyncio.run(stream.connect())
