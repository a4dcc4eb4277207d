from abc import ABC, abstractmethod
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from releaseminer.utils import utcnow


class DomainEvent(BaseModel, ABC):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    @abstractmethod
    def event_type(self) -> str:
        pass
