"""
Event bus for client events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher, so a SessionInvalidated handler has cleared the
token before the failing request's exception reaches the caller. Handler
errors are logged but never propagate.
"""

import logging
from typing import Callable, Dict, List

from core.events import ClientEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for client events.

    Subscribe by event class name (string), publish by event instance.
    Handlers are called synchronously in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of event class to subscribe to (e.g. 'SessionInvalidated')
            callback: Function to call when event is published
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable):
        """Remove a subscription. Unknown callbacks are ignored."""
        callbacks = self._subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event: ClientEvent):
        """
        Publish an event to all subscribers of that type.

        Args:
            event: ClientEvent instance to publish
        """
        event_type = event.__class__.__name__

        if event_type not in self._subscribers:
            return

        for callback in list(self._subscribers[event_type]):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
