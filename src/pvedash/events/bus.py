"""EventBus — synchronous in-process pub/sub.

Learn: publish() is fire-and-forget, like Redis pub/sub: if no one is
subscribed the event is simply dropped and there is no history to replay.
Consumers that subscribe late re-read the shared cache instead.

Three rules keep fan-out predictable:
1. Handlers for one topic run in subscription order.
2. A handler that raises is logged and skipped; its siblings still run.
3. publish() iterates a copy of the subscriber list, so a handler that
   subscribes or unsubscribes mid-dispatch never causes another handler
   to be skipped or called twice.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Union

import structlog

from pvedash.events.types import Topic

logger = structlog.get_logger()

Handler = Callable[[Any], Any]


@dataclass(eq=False)
class Subscription:
    """A (topic, handler) pair held by the bus.

    Identity-compared: subscribing the same handler twice yields two
    subscriptions, and cancelling one leaves the other in place.
    """

    topic: Topic
    handler: Handler
    active: bool = field(default=True)


class EventBus:
    """Page-lifetime publish/subscribe hub."""

    def __init__(self):
        self._subscriptions: dict[Topic, list[Subscription]] = {}

    def subscribe(
        self, topic: Union[Topic, str], handler: Handler
    ) -> Callable[[], None]:
        """Register `handler` for `topic`. Returns an idempotent unsubscribe."""
        sub = Subscription(topic=Topic(topic), handler=handler)
        self._subscriptions.setdefault(sub.topic, []).append(sub)

        def unsubscribe() -> None:
            self._remove(sub)

        return unsubscribe

    def _remove(self, sub: Subscription) -> None:
        if not sub.active:
            return
        sub.active = False
        subs = self._subscriptions.get(sub.topic, [])
        # Remove by identity only; sibling subscriptions are untouched
        self._subscriptions[sub.topic] = [s for s in subs if s is not sub]

    def publish(self, topic: Union[Topic, str], payload: Any = None) -> int:
        """Deliver `payload` to every current subscriber of `topic`.

        Returns the number of handlers that completed without raising.
        """
        topic = Topic(topic)
        delivered = 0
        for sub in list(self._subscriptions.get(topic, ())):
            # Unsubscribed by an earlier handler during this dispatch
            if not sub.active:
                continue
            try:
                sub.handler(payload)
                delivered += 1
            except Exception:
                logger.exception(
                    "event_bus.handler_failed",
                    topic=topic.value,
                    handler=getattr(sub.handler, "__qualname__", repr(sub.handler)),
                )
        return delivered

    def subscriber_count(self, topic: Union[Topic, str]) -> int:
        return len(self._subscriptions.get(Topic(topic), ()))

    def clear(self) -> None:
        """Drop every subscription (process shutdown / test teardown)."""
        for subs in self._subscriptions.values():
            for sub in subs:
                sub.active = False
        self._subscriptions.clear()
