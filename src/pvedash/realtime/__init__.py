"""Real-time alert delivery — Server-Sent Events client.

Learn: Alerts flow server → client over one long-lived HTTP stream:
1. state.py — pure reconnect state machine (no I/O)
2. sse.py — text/event-stream frame decoder
3. client.py — owns the channel task and retry timer, executes the
   state machine's effects, and publishes alerts on the event bus

Snapshot refresh is independent: a missed or duplicated alert is
corrected by the next periodic alert list / snapshot fetch.
"""

from pvedash.realtime.client import EventEnvelope, LiveEventClient
from pvedash.realtime.state import ConnectionState, ReconnectPolicy

__all__ = ["ConnectionState", "EventEnvelope", "LiveEventClient", "ReconnectPolicy"]
