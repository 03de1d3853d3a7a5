"""Live channel state machine — pure transition function.

Learn: The client never assigns its state directly. Every event (a call
to open()/close(), the channel reporting open or lost, the retry timer
firing) becomes a Trigger, and transition() returns the next state, the
next attempt counter, an optional retry delay and the ordered list of
side effects to perform. The client executes those effects; this module
does no I/O, so the whole table is unit-testable without a network.

    IDLE ──OPEN──► CONNECTING ──CHANNEL_OPENED──► OPEN
                      │  ▲                          │
       CHANNEL_LOST   │  │ TIMER_FIRED              │ CHANNEL_LOST
                      ▼  │                          ▼
                   RECONNECTING ◄───────────────────┘
                      │ (attempt == max_attempts)
                      ▼
                    FAILED ──RECONNECT──► CONNECTING

    any ──CLOSE──► CLOSED          any ──OPEN──► CONNECTING (fresh)

Backoff: delay = min(base_delay * 2**attempt, max_delay), then attempt += 1.
The counter resets on OPEN, on an explicit OPEN and on RECONNECT.

AUTH_REJECTED goes straight to FAILED without spending retry budget.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


class Trigger(str, Enum):
    OPEN = "open"  # open() with a new target
    CHANNEL_OPENED = "channel_opened"
    CHANNEL_LOST = "channel_lost"  # error, server close, idle timeout
    AUTH_REJECTED = "auth_rejected"  # handshake answered 401/403
    TIMER_FIRED = "timer_fired"
    RECONNECT = "reconnect"  # explicit reconnect()
    CLOSE = "close"


class Effect(str, Enum):
    CANCEL_TIMER = "cancel_timer"
    TEARDOWN = "teardown"
    CONNECT = "connect"
    SCHEDULE_RETRY = "schedule_retry"
    PUBLISH_CONNECTED = "publish_connected"
    PUBLISH_DISCONNECTED = "publish_disconnected"
    PUBLISH_EXHAUSTED = "publish_exhausted"
    PUBLISH_AUTH_REJECTED = "publish_auth_rejected"


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


class Transition(NamedTuple):
    state: ConnectionState
    attempt: int
    delay: Optional[float]
    effects: tuple[Effect, ...]


ACTIVE_STATES = frozenset(
    {ConnectionState.CONNECTING, ConnectionState.OPEN, ConnectionState.RECONNECTING}
)
_LIVE_CHANNEL_STATES = frozenset({ConnectionState.CONNECTING, ConnectionState.OPEN})


def transition(
    state: ConnectionState,
    trigger: Trigger,
    attempt: int,
    policy: ReconnectPolicy,
) -> Transition:
    """Compute the next state for `trigger`. Unlisted pairs are ignored (no-op)."""
    unchanged = Transition(state, attempt, None, ())

    if trigger is Trigger.CLOSE:
        effects = (Effect.CANCEL_TIMER, Effect.TEARDOWN)
        if state is ConnectionState.OPEN:
            effects += (Effect.PUBLISH_DISCONNECTED,)
        return Transition(ConnectionState.CLOSED, attempt, None, effects)

    if trigger is Trigger.OPEN:
        effects = (Effect.CANCEL_TIMER, Effect.TEARDOWN)
        if state is ConnectionState.OPEN:
            effects += (Effect.PUBLISH_DISCONNECTED,)
        return Transition(
            ConnectionState.CONNECTING, 0, None, effects + (Effect.CONNECT,)
        )

    if trigger is Trigger.CHANNEL_OPENED:
        if state is not ConnectionState.CONNECTING:
            return unchanged
        return Transition(ConnectionState.OPEN, 0, None, (Effect.PUBLISH_CONNECTED,))

    if trigger is Trigger.CHANNEL_LOST:
        if state not in _LIVE_CHANNEL_STATES:
            return unchanged
        effects = (Effect.TEARDOWN,)
        if state is ConnectionState.OPEN:
            effects += (Effect.PUBLISH_DISCONNECTED,)
        if attempt < policy.max_attempts:
            return Transition(
                ConnectionState.RECONNECTING,
                attempt + 1,
                policy.delay_for(attempt),
                effects + (Effect.SCHEDULE_RETRY,),
            )
        return Transition(
            ConnectionState.FAILED, attempt, None, effects + (Effect.PUBLISH_EXHAUSTED,)
        )

    if trigger is Trigger.AUTH_REJECTED:
        if state not in _LIVE_CHANNEL_STATES:
            return unchanged
        effects = (Effect.TEARDOWN,)
        if state is ConnectionState.OPEN:
            effects += (Effect.PUBLISH_DISCONNECTED,)
        return Transition(
            ConnectionState.FAILED, attempt, None, effects + (Effect.PUBLISH_AUTH_REJECTED,)
        )

    if trigger is Trigger.TIMER_FIRED:
        if state is not ConnectionState.RECONNECTING:
            return unchanged
        return Transition(ConnectionState.CONNECTING, attempt, None, (Effect.CONNECT,))

    if trigger is Trigger.RECONNECT:
        if state not in (ConnectionState.FAILED, ConnectionState.RECONNECTING):
            return unchanged
        return Transition(
            ConnectionState.CONNECTING, 0, None, (Effect.CANCEL_TIMER, Effect.CONNECT)
        )

    return unchanged
