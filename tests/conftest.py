"""Test fixtures — a controllable clock, a fresh bus, and fake backends.

Learn: Nothing here touches the network. Every HTTP-facing component
accepts an httpx transport, so tests hand it an httpx.MockTransport whose
handler plays the dashboard backend:

1. The aggregator answers POST /api/v1/proxmox/fetch-data with JSON
2. The alert stream answers GET /api/v1/alerts/stream with an SSE body
   that stays open until the client hangs up

Time-dependent components (cache TTL, JWT expiry) take a `clock` callable,
so tests advance a FakeClock instead of sleeping.
"""

import asyncio
import json

import httpx
import pytest

from pvedash.cache.snapshot_cache import SnapshotCache
from pvedash.events.bus import EventBus

T0 = 1_700_000_000.0

NODE_PVE01 = {"node": "pve-01", "status": "online", "cpu": 0.12, "maxmem": 68719476736}

AGGREGATOR_OK = {
    "success": True,
    "nodes": [NODE_PVE01],
    "vms": [{"vmid": 100, "name": "web", "status": "running", "node": "pve-01"}],
    "containers": [],
    "storagePools": [{"storage": "local-lvm", "type": "lvmthin"}],
    "networkInterfaces": [{"iface": "vmbr0", "type": "bridge"}],
}


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """Bus handler that keeps every payload it receives."""

    def __init__(self):
        self.payloads = []

    def __call__(self, payload) -> None:
        self.payloads.append(payload)

    @property
    def count(self) -> int:
        return len(self.payloads)


def sse_frame(event: str, data) -> bytes:
    body = data if isinstance(data, str) else json.dumps(data)
    return f"event: {event}\ndata: {body}\n\n".encode()


class StreamingBackend:
    """MockTransport handler serving an SSE stream per connection.

    Each connection pops the next entry of `responses`: an int is answered
    as that bare HTTP status; a list of byte frames is streamed with 200
    and the connection then stays open until the client hangs up (or
    closes right away if `hold_open` is False). Once `responses` is exhausted the last
    entry repeats.
    """

    def __init__(self, responses=None, *, hold_open: bool = True):
        self.responses = list(responses or [[]])
        self.hold_open = hold_open
        self.requests: list[httpx.Request] = []
        self._released = asyncio.Event()

    @property
    def connections(self) -> int:
        return len(self.requests)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        idx = min(len(self.requests), len(self.responses)) - 1
        planned = self.responses[idx]
        if isinstance(planned, int):
            return httpx.Response(planned, json={"error": "nope"})

        async def body():
            for frame in planned:
                yield frame
            if self.hold_open:
                await self._released.wait()

        return httpx.Response(
            200, headers={"Content-Type": "text/event-stream"}, content=body()
        )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll `predicate` on the loop until it's true (or fail the test)."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def bus():
    b = EventBus()
    yield b
    b.clear()


@pytest.fixture()
def cache(clock):
    return SnapshotCache(300, clock=clock)
