"""Tests for LiveEventClient against a fake SSE backend.

Learn: httpx.MockTransport lets the client stream a real text/event-stream
body without a server. StreamingBackend (conftest) decides per connection
whether to answer with a bare status code or an open stream, and counts
connections so tests can assert "exactly one channel" and "N retries".
"""

import asyncio

import httpx
import pytest

from conftest import Recorder, StreamingBackend, sse_frame, wait_until
from pvedash.auth.credentials import TokenStore
from pvedash.events.types import Topic
from pvedash.realtime.client import EventEnvelope, LiveEventClient
from pvedash.realtime.state import ConnectionState as S, ReconnectPolicy
from pvedash.schemas.alerts import Alert, AlertAck

ADDR = "http://dash.test/api/v1/alerts/stream"

ALERT = {
    "id": 7,
    "source": "pve-01",
    "severity": "critical",
    "title": "Node offline",
    "message": "pve-01 stopped answering",
}

FAST = ReconnectPolicy(base_delay=0.001, max_delay=0.001, max_attempts=2)


def _client(bus, backend, *, token="session-token", policy=FAST, **kwargs):
    return LiveEventClient(
        bus,
        credentials=TokenStore(token),
        policy=policy,
        transport=httpx.MockTransport(backend),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_alert_reaches_handler_and_bus(bus, clock):
    backend = StreamingBackend([[sse_frame("alert", ALERT)]])
    client = _client(bus, backend, clock=clock)
    handled = Recorder()
    on_bus = Recorder()
    connected = Recorder()
    bus.subscribe(Topic.ALERT_RECEIVED, on_bus)
    bus.subscribe(Topic.LIVE_CONNECTED, connected)

    try:
        await client.open(ADDR, handlers={"alert": handled})
        await client.wait_for_state(S.OPEN, timeout=2)
        await wait_until(lambda: on_bus.count == 1)

        envelope = handled.payloads[0]
        assert isinstance(envelope, EventEnvelope)
        assert envelope.type == "alert"
        assert envelope.received_at == clock.now
        assert isinstance(on_bus.payloads[0], Alert)
        assert on_bus.payloads[0].severity == "critical"
        assert connected.payloads == [{"address": ADDR}]
        assert client.is_connected
        assert backend.requests[0].url.params["token"] == "session-token"
        assert backend.requests[0].headers["Accept"] == "text/event-stream"
    finally:
        await client.aclose()

    assert client.state is S.CLOSED
    assert not client.has_channel


@pytest.mark.asyncio
async def test_frames_dispatch_in_arrival_order(bus):
    frames = [
        sse_frame("alert", {**ALERT, "id": 1}),
        sse_frame("ack", {"alert_id": 1}),
        sse_frame("alert", {**ALERT, "id": 2}),
    ]
    backend = StreamingBackend([frames])
    client = _client(bus, backend)
    seen = []
    handlers = {
        "alert": lambda e: seen.append(("alert", e.payload.id)),
        "ack": lambda e: seen.append(("ack", e.payload.alert_id)),
    }
    acks = Recorder()
    bus.subscribe(Topic.ALERT_ACKNOWLEDGED, acks)

    try:
        await client.open(ADDR, handlers=handlers)
        await wait_until(lambda: len(seen) == 3)
    finally:
        await client.aclose()

    assert seen == [("alert", 1), ("ack", 1), ("alert", 2)]
    assert acks.payloads == [AlertAck(alert_id=1)]


@pytest.mark.asyncio
async def test_malformed_payloads_are_dropped(bus):
    """Bad JSON or a payload that fails validation is logged and skipped."""
    frames = [
        sse_frame("alert", "{not json"),
        sse_frame("alert", {"id": 1}),
        sse_frame("alert", ALERT),
    ]
    backend = StreamingBackend([frames])
    client = _client(bus, backend)
    on_bus = Recorder()
    bus.subscribe(Topic.ALERT_RECEIVED, on_bus)

    try:
        await client.open(ADDR)
        await wait_until(lambda: on_bus.count == 1)
        await asyncio.sleep(0.01)
        assert on_bus.count == 1
        assert on_bus.payloads[0].id == 7
        assert client.state is S.OPEN
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_stream(bus):
    backend = StreamingBackend([[sse_frame("alert", ALERT), sse_frame("alert", ALERT)]])
    client = _client(bus, backend)
    on_bus = Recorder()
    bus.subscribe(Topic.ALERT_RECEIVED, on_bus)

    async def broken(_envelope):
        raise RuntimeError("handler bug")

    try:
        await client.open(ADDR, handlers={"alert": broken})
        await wait_until(lambda: on_bus.count == 2)
        assert client.state is S.OPEN
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_auth_rejection_fails_without_retrying(bus):
    backend = StreamingBackend([401])
    client = _client(bus, backend)
    rejected = Recorder()
    exhausted = Recorder()
    bus.subscribe(Topic.LIVE_AUTH_REJECTED, rejected)
    bus.subscribe(Topic.LIVE_RECONNECT_EXHAUSTED, exhausted)

    try:
        await client.open(ADDR)
        await client.wait_for_state(S.FAILED, timeout=2)
        await asyncio.sleep(0.02)

        assert backend.connections == 1
        assert not client.has_pending_timer
        assert rejected.count == 1
        assert exhausted.count == 0
        assert "401" in client.last_error
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_retries_are_bounded(bus):
    """503 on every attempt: initial try plus max_attempts retries, then FAILED."""
    backend = StreamingBackend([503])
    client = _client(bus, backend)
    exhausted = Recorder()
    bus.subscribe(Topic.LIVE_RECONNECT_EXHAUSTED, exhausted)

    try:
        await client.open(ADDR)
        assert await client.wait_closed(timeout=2) is S.FAILED
        await asyncio.sleep(0.02)

        assert backend.connections == 3
        assert exhausted.count == 1
        assert exhausted.payloads[0]["attempts"] == 2
        assert not client.has_pending_timer
        assert not client.has_channel
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_reconnect_after_failure(bus):
    backend = StreamingBackend([401, []])
    client = _client(bus, backend)

    try:
        await client.open(ADDR)
        await client.wait_for_state(S.FAILED, timeout=2)

        await client.reconnect()
        await client.wait_for_state(S.OPEN, timeout=2)
        assert client.attempt == 0
        assert backend.connections == 2
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_server_close_schedules_reconnect(bus):
    backend = StreamingBackend([[sse_frame("ping", {"timestamp": 1})]], hold_open=False)
    client = _client(bus, backend, policy=ReconnectPolicy(0.001, 0.001, 5))
    disconnected = Recorder()
    bus.subscribe(Topic.LIVE_DISCONNECTED, disconnected)

    try:
        await client.open(ADDR)
        await wait_until(lambda: backend.connections >= 2)
        assert disconnected.count >= 1
        assert disconnected.payloads[0]["error"] == "Live channel closed by server"
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_idle_timeout_counts_as_lost(bus):
    backend = StreamingBackend([[]])
    client = _client(
        bus,
        backend,
        policy=ReconnectPolicy(base_delay=10, max_delay=10, max_attempts=3),
        idle_timeout=0.05,
    )

    try:
        await client.open(ADDR)
        await client.wait_for_state(S.RECONNECTING, timeout=2)
        assert client.has_pending_timer
        assert client.retry_delay == 10
        assert "No data received" in client.last_error
    finally:
        await client.close()

    assert client.state is S.CLOSED
    assert not client.has_pending_timer
    await client.aclose()


@pytest.mark.asyncio
async def test_open_same_target_twice_is_noop(bus):
    backend = StreamingBackend([[]])
    client = _client(bus, backend)

    try:
        await client.open(ADDR)
        await client.wait_for_state(S.OPEN, timeout=2)
        await client.open(ADDR)
        await asyncio.sleep(0.01)

        assert backend.connections == 1
        assert client.state is S.OPEN
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_open_new_target_replaces_channel(bus):
    backend = StreamingBackend([[]])
    client = _client(bus, backend)
    disconnected = Recorder()
    bus.subscribe(Topic.LIVE_DISCONNECTED, disconnected)

    try:
        await client.open(ADDR)
        await client.wait_for_state(S.OPEN, timeout=2)
        await client.open(ADDR + "?v=2")
        await client.wait_for_state(S.OPEN, timeout=2)
        await asyncio.sleep(0.01)

        assert backend.connections == 2
        assert disconnected.count == 1
        assert client.address == ADDR + "?v=2"
        assert client.has_channel
        assert not client.has_pending_timer
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_open_refused_while_unauthenticated(bus):
    backend = StreamingBackend([[]])
    client = _client(bus, backend, token=None)

    await client.open(ADDR)

    assert client.state is S.IDLE
    assert backend.connections == 0
    assert client.last_error == "Authentication required for live notifications"
    await client.aclose()


@pytest.mark.asyncio
async def test_close_then_open_starts_fresh(bus):
    backend = StreamingBackend([[]])
    client = _client(bus, backend)

    try:
        await client.open(ADDR)
        await client.wait_for_state(S.OPEN, timeout=2)
        await client.close()
        assert client.state is S.CLOSED

        await client.open(ADDR)
        await client.wait_for_state(S.OPEN, timeout=2)
        assert backend.connections == 2
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_connected_frame_passes_raw_payload(bus):
    backend = StreamingBackend([[sse_frame("connected", {"client_id": "abc"})]])
    client = _client(bus, backend)
    handled = Recorder()

    try:
        await client.open(ADDR, handlers={"connected": handled})
        await wait_until(lambda: handled.count == 1)
        assert handled.payloads[0].payload == {"client_id": "abc"}
    finally:
        await client.aclose()

    assert await client.wait_closed(timeout=1) is S.CLOSED
