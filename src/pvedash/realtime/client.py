"""LiveEventClient — reconnecting, authenticated alert stream.

Learn: The client connects to {api_url}/api/v1/alerts/stream?token=JWT and
reads Server-Sent Events. This is a long-lived connection — one per
dashboard process. The handler:
1. Refuses to open while the credential source is unauthenticated
2. Opens the stream; 401/403 on the handshake is an auth rejection
3. Decodes frames in arrival order and dispatches each to its handler
4. On error, server close or idle timeout, schedules a reconnect with
   exponential backoff (see realtime/state.py for the full table)

Invariants:
- At most one channel task and one retry timer exist per client. A new
  open() cancels both before starting over, and the new channel waits for
  the old one to finish closing before it connects.
- Notifications from a torn-down channel are ignored (generation check).
- Nothing here raises into the caller. Exhausted retries and rejected
  credentials end in FAILED and are announced on the bus.
"""

import asyncio
import inspect
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import httpx
import structlog
from pydantic import ValidationError

from pvedash.auth.credentials import CredentialSource
from pvedash.errors import ChannelAuthError
from pvedash.events.bus import EventBus
from pvedash.events.types import Topic
from pvedash.realtime.sse import ServerSentEvent, iter_sse
from pvedash.realtime.state import (
    ACTIVE_STATES,
    ConnectionState,
    Effect,
    ReconnectPolicy,
    Trigger,
    transition,
)
from pvedash.schemas.alerts import Alert, AlertAck, Ping

logger = structlog.get_logger()

AUTH_REJECTED_STATUSES = (401, 403)

_PAYLOAD_MODELS = {
    "alert": Alert,
    "ack": AlertAck,
    "ping": Ping,
}


@dataclass(frozen=True)
class EventEnvelope:
    """One inbound push message. Dispatched once, never retained."""

    type: str
    payload: Any
    received_at: float


EventHandler = Callable[[EventEnvelope], Any]


class LiveEventClient:
    def __init__(
        self,
        bus: EventBus,
        *,
        credentials: Optional[CredentialSource] = None,
        policy: ReconnectPolicy = ReconnectPolicy(),
        idle_timeout: Optional[float] = 90.0,
        http_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.bus = bus
        self.credentials = credentials
        self.policy = policy
        self.idle_timeout = idle_timeout
        self.http_timeout = http_timeout
        self.last_error: Optional[str] = None
        self.retry_delay: Optional[float] = None

        self._transport = transport
        self._clock = clock
        self._http: Optional[httpx.AsyncClient] = None

        self._state = ConnectionState.IDLE
        self._attempt = 0
        self._address: Optional[str] = None
        self._credential: Optional[str] = None
        self._handlers: dict[str, EventHandler] = {}

        self._channel: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._generation = 0
        self._retiring: set[asyncio.Task] = set()
        self._waiters: list[tuple[frozenset, asyncio.Future]] = []

    # ─── Observers ────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    @property
    def has_channel(self) -> bool:
        return self._channel is not None

    async def wait_for_state(
        self, *states: ConnectionState, timeout: Optional[float] = None
    ) -> ConnectionState:
        """Wait until the client reaches one of `states`."""
        if self._state in states:
            return self._state
        fut = asyncio.get_running_loop().create_future()
        entry = (frozenset(states), fut)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(fut, timeout=timeout)
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)

    async def wait_closed(self, timeout: Optional[float] = None) -> ConnectionState:
        """Wait until the client stops trying: CLOSED, or FAILED after giving up."""
        return await self.wait_for_state(
            ConnectionState.CLOSED, ConnectionState.FAILED, timeout=timeout
        )

    # ─── Public contract ──────────────────────────────────

    async def open(
        self,
        address: str,
        credential: Optional[str] = None,
        handlers: Optional[Mapping[str, EventHandler]] = None,
    ) -> None:
        """Connect to `address`. Re-opening the same target while active is a no-op."""
        if self.credentials is not None:
            if not self.credentials.is_authenticated():
                self.last_error = "Authentication required for live notifications"
                logger.warning("live.open_refused", address=address, reason="unauthenticated")
                return
            if credential is None:
                credential = self.credentials.get_token()

        if handlers is not None:
            self._handlers = dict(handlers)

        if (
            self._state in ACTIVE_STATES
            and address == self._address
            and credential == self._credential
        ):
            return

        self._address = address
        self._credential = credential
        self.last_error = None
        self._fire(Trigger.OPEN)
        await self._settle()

    async def reconnect(self) -> None:
        """Retry now. Only meaningful from FAILED or RECONNECTING."""
        self.last_error = None
        self._fire(Trigger.RECONNECT)
        await self._settle()

    async def close(self) -> None:
        """Tear down the channel and any pending retry. A later open() starts fresh."""
        self._fire(Trigger.CLOSE)
        await self._settle()

    async def aclose(self) -> None:
        """close() plus release of the underlying HTTP connection pool."""
        await self.close()
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # ─── State machine driver ─────────────────────────────

    def _fire(self, trigger: Trigger) -> None:
        prev = self._state
        t = transition(prev, trigger, self._attempt, self.policy)
        if t.state is prev and not t.effects:
            return

        self._state, self._attempt = t.state, t.attempt
        logger.info(
            "live.transition",
            trigger=trigger.value,
            from_state=prev.value,
            to_state=t.state.value,
            attempt=t.attempt,
        )
        for effect in t.effects:
            self._perform(effect, t.delay)
        self._notify_waiters()

    def _perform(self, effect: Effect, delay: Optional[float]) -> None:
        if effect is Effect.CANCEL_TIMER:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
                self.retry_delay = None
        elif effect is Effect.TEARDOWN:
            self._teardown_channel()
        elif effect is Effect.CONNECT:
            self._generation += 1
            self._channel = asyncio.get_running_loop().create_task(
                self._run_channel(self._generation)
            )
        elif effect is Effect.SCHEDULE_RETRY:
            self.retry_delay = delay
            self._timer = asyncio.get_running_loop().call_later(delay, self._on_timer)
            logger.info(
                "live.reconnect_scheduled",
                delay=delay,
                attempt=self._attempt,
                max_attempts=self.policy.max_attempts,
            )
        elif effect is Effect.PUBLISH_CONNECTED:
            self.bus.publish(Topic.LIVE_CONNECTED, {"address": self._address})
        elif effect is Effect.PUBLISH_DISCONNECTED:
            self.bus.publish(
                Topic.LIVE_DISCONNECTED,
                {"address": self._address, "error": self.last_error},
            )
        elif effect is Effect.PUBLISH_EXHAUSTED:
            logger.warning(
                "live.reconnect_exhausted",
                address=self._address,
                attempts=self._attempt,
                error=self.last_error,
            )
            self.bus.publish(
                Topic.LIVE_RECONNECT_EXHAUSTED,
                {"address": self._address, "attempts": self._attempt, "error": self.last_error},
            )
        elif effect is Effect.PUBLISH_AUTH_REJECTED:
            logger.warning("live.auth_rejected", address=self._address, error=self.last_error)
            self.bus.publish(
                Topic.LIVE_AUTH_REJECTED,
                {"address": self._address, "error": self.last_error},
            )

    def _teardown_channel(self) -> None:
        task = self._channel
        self._channel = None
        # Any report still coming from the old task is now stale
        self._generation += 1
        if task is None or task.done():
            return
        if task is not asyncio.current_task():
            task.cancel()
            self._retiring.add(task)
            task.add_done_callback(self._retiring.discard)

    def _on_timer(self) -> None:
        self._timer = None
        self.retry_delay = None
        self._fire(Trigger.TIMER_FIRED)

    def _report(self, generation: int, trigger: Trigger) -> None:
        """Channel task → state machine, ignoring reports from retired channels."""
        if generation != self._generation:
            return
        self._fire(trigger)

    def _notify_waiters(self) -> None:
        for states, fut in list(self._waiters):
            if self._state in states and not fut.done():
                fut.set_result(self._state)

    async def _settle(self) -> None:
        if self._retiring:
            await asyncio.gather(*list(self._retiring), return_exceptions=True)

    # ─── Channel I/O ──────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self.http_timeout, read=None),
            )
        return self._http

    async def _run_channel(self, generation: int) -> None:
        # The previous channel must be fully closed before a new one connects
        await self._settle()

        address = self._address
        params = {"token": self._credential} if self._credential else None
        log = logger.bind(address=address, generation=generation)

        try:
            async with self._client().stream(
                "GET",
                address,
                params=params,
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            ) as response:
                if response.status_code in AUTH_REJECTED_STATUSES:
                    raise ChannelAuthError(
                        f"Live channel rejected credential (HTTP {response.status_code})",
                        status_code=response.status_code,
                    )
                if response.is_error:
                    self.last_error = f"Live channel handshake failed (HTTP {response.status_code})"
                    log.warning("live.handshake_failed", status=response.status_code)
                    self._report(generation, Trigger.CHANNEL_LOST)
                    return

                self._report(generation, Trigger.CHANNEL_OPENED)
                async for sse in iter_sse(self._lines(response)):
                    if generation != self._generation:
                        return
                    await self._dispatch(sse)

            self.last_error = "Live channel closed by server"
        except ChannelAuthError as e:
            self.last_error = str(e)
            self._report(generation, Trigger.AUTH_REJECTED)
            return
        except asyncio.TimeoutError:
            self.last_error = f"No data received for {self.idle_timeout:g}s"
        except httpx.HTTPError as e:
            self.last_error = f"Live channel error: {e or type(e).__name__}"
        except Exception as e:
            log.exception("live.channel_error")
            self.last_error = f"Live channel error: {e or type(e).__name__}"

        log.info("live.channel_lost", error=self.last_error)
        self._report(generation, Trigger.CHANNEL_LOST)

    async def _lines(self, response: httpx.Response):
        """Yield text lines, raising asyncio.TimeoutError after `idle_timeout` of silence."""
        lines = response.aiter_lines().__aiter__()
        while True:
            try:
                if self.idle_timeout is None:
                    line = await lines.__anext__()
                else:
                    line = await asyncio.wait_for(lines.__anext__(), timeout=self.idle_timeout)
            except StopAsyncIteration:
                return
            yield line

    async def _dispatch(self, sse: ServerSentEvent) -> None:
        """Decode one frame, hand it to its handler and mirror alerts onto the bus."""
        event_type = sse.event
        try:
            raw = json.loads(sse.data) if sse.data else {}
        except ValueError:
            logger.warning("live.malformed_payload", event_type=event_type, data=sse.data[:200])
            return

        payload: Any = raw
        model = _PAYLOAD_MODELS.get(event_type)
        if model is not None:
            try:
                payload = model.model_validate(raw)
            except ValidationError as e:
                logger.warning(
                    "live.invalid_payload", event_type=event_type, errors=e.error_count()
                )
                return

        envelope = EventEnvelope(type=event_type, payload=payload, received_at=self._clock())

        handler = self._handlers.get(event_type)
        if handler is not None:
            try:
                result = handler(envelope)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("live.handler_failed", event_type=event_type)

        if event_type == "alert":
            self.bus.publish(Topic.ALERT_RECEIVED, payload)
        elif event_type == "ack":
            self.bus.publish(Topic.ALERT_ACKNOWLEDGED, payload)
