"""
Event bus for invoicing domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate: the
primary operation (DB write + audit) has already committed.
"""

import logging
import threading
from typing import Callable, Dict, List

from core.events import InvoicingEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for invoicing domain events.

    Subscribe by event class or class name, publish by event instance.
    Handlers are called synchronously in subscription order. Subscribing and
    publishing are safe from concurrent request threads.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str | type, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event class, or its name (e.g. 'InvoicePaid')
            callback: Function to call when event is published
        """
        name = event_type if isinstance(event_type, str) else event_type.__name__
        with self._lock:
            self._subscribers.setdefault(name, []).append(callback)

    def publish(self, event: InvoicingEvent):
        """
        Publish an event to all subscribers of that type.

        Args:
            event: InvoicingEvent instance to publish
        """
        event_type = event.__class__.__name__

        with self._lock:
            callbacks = list(self._subscribers.get(event_type, ()))

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
