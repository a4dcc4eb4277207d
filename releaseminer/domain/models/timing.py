from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import Field

from releaseminer.domain.models.base import BaseModel
from releaseminer.utils import utcnow


class Timing(BaseModel):
    name: str
    started_at: datetime
    ended_at: datetime
    metadata: Optional[Dict[str, Any]] = None

    @property
    def duration(self) -> timedelta:
        return self.ended_at - self.started_at


class HasTiming:
    """Mixin for summaries that time the phases of a run.

        with summary.record_timing("dispatch"):
            ...
    """

    timings: List[Timing] = Field(default_factory=list)

    @contextmanager
    def record_timing(self, name: str, metadata: Optional[dict] = None):
        metadata = dict(metadata or {})
        started_at = utcnow()
        try:
            yield
        except BaseException as e:
            metadata["error"] = f"{type(e).__name__}: {e}"
            raise
        finally:
            self.timings.append(
                Timing(
                    name=name,
                    started_at=started_at,
                    ended_at=utcnow(),
                    metadata=metadata or None,
                )
            )

    def get_timing(self, name: str) -> Optional[Timing]:
        for timing in self.timings:
            if timing.name == name:
                return timing
        return None
