"""In-process event bus.

Learn: Producers (the refresh orchestrator, the live alert client, the
credential store) publish on a closed set of topics. Consumers subscribe
and re-read shared state when notified. Neither side holds a reference to
the other.
"""

from pvedash.events.bus import EventBus, Subscription
from pvedash.events.types import Topic

__all__ = ["EventBus", "Subscription", "Topic"]
