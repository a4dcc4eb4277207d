import logging
from typing import Callable, List, Protocol

from .domain_event import DomainEvent

logger = logging.getLogger(__name__)


class EventDispatcher(Protocol):
    def dispatch(self, event: DomainEvent):
        pass


class QueueForwarder:
    """Hands events to another thread through a queue."""

    def __init__(self, queue):
        self.queue = queue

    def dispatch(self, event: DomainEvent):
        self.queue.put(event)


class EventBus:
    """Fans run events out to every registered dispatcher.

    A run publishes from its dispatch loop only, so dispatchers receive the
    events of one run in the order they happened. An exception raised by a
    dispatcher ends the run; use a `Publisher` to isolate subscribers.
    """

    def __init__(self):
        self.dispatchers: List[EventDispatcher] = []

    def register(self, dispatcher: EventDispatcher) -> Callable[[], None]:
        self.dispatchers.append(dispatcher)

        def unregister():
            if dispatcher in self.dispatchers:
                self.dispatchers.remove(dispatcher)

        return unregister

    def register_queue(self, queue) -> Callable[[], None]:
        return self.register(QueueForwarder(queue))

    def dispatch(self, event: DomainEvent):
        for dispatcher in self.dispatchers:
            try:
                dispatcher.dispatch(event)
            except Exception:
                logger.exception(f"{dispatcher!r} failed on {event.event_type}")
                raise
