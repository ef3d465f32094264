"""Fixtures for market data tests.

Provides stand-ins for the network and the clock: a fake websocket
connection and dialer for StreamingClient, a controllable sleep for the
reconnect delay, and a manual clock for staleness and cooldown checks.
"""

import asyncio
import json

import httpx
import pytest


class FakeConnection:
    """Minimal websocket connection: records sent frames, replays queued ones."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self.fail_send = False
        self._frames: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.fail_send:
            raise ConnectionError("send failed")
        self.sent.append(json.loads(message))

    async def recv(self):
        item = await self._frames.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, frame) -> None:
        """Queue an inbound frame (dicts are JSON-encoded)."""
        self._frames.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def drop(self, error: BaseException | None = None) -> None:
        """Make the next recv() fail like a dropped connection."""
        self._frames.put_nowait(error or ConnectionError("connection dropped"))


class FakeDialer:
    """Callable passed as StreamingClient(connect=...).

    Each call pops the next scripted outcome: a FakeConnection to return or an
    exception to raise. When the script is empty a fresh connection is made.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.script: list = []

    async def __call__(self, url: str) -> FakeConnection:
        self.calls.append(url)
        outcome = self.script.pop(0) if self.script else FakeConnection()
        if isinstance(outcome, BaseException):
            raise outcome
        self.connections.append(outcome)
        return outcome

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


class ManualSleep:
    """Sleep replacement: records delays and blocks until released."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._release = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._release.wait()
        self._release = asyncio.Event()

    def release(self) -> None:
        self._release.set()


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def dialer() -> FakeDialer:
    return FakeDialer()


@pytest.fixture
def manual_sleep() -> ManualSleep:
    return ManualSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def json_transport(routes: dict) -> httpx.MockTransport:
    """MockTransport answering by URL path.

    ``routes`` maps a path to a (status, body) tuple, or to an exception to
    raise. Unknown paths get a 404.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        outcome = routes.get(request.url.path)
        if outcome is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(outcome, Exception):
            raise outcome
        status, body = outcome
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def make_transport():
    return json_transport
