import logging
from typing import List

from .domain_event import DomainEvent
from .subscriber import Subscriber

logger = logging.getLogger(__name__)


class Publisher:
    """Delivers events to subscribers. A failing subscriber is logged and
    skipped; it never affects the run or the other subscribers."""

    def __init__(self):
        self.subscribers: List[Subscriber] = []

    def add_subscriber(self, subscriber: Subscriber):
        self.subscribers.append(subscriber)

    def dispatch(self, event: DomainEvent):
        for subscriber in self.subscribers:
            try:
                subscriber.handle(event)
            except Exception:
                logger.exception(
                    f"{type(subscriber).__name__} failed to handle {event.event_type}"
                )
