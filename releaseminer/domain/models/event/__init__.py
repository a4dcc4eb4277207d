from .domain_event import DomainEvent
from .event_bus import EventBus, EventDispatcher, QueueForwarder
from .publisher import Publisher
from .subscriber import Subscriber

__all__ = [
    "DomainEvent",
    "EventBus",
    "EventDispatcher",
    "Publisher",
    "QueueForwarder",
    "Subscriber",
]
