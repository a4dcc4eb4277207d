import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import Field

from releaseminer.domain.models.base import BaseModel
from releaseminer.domain.models.build_target import BuildTarget
from releaseminer.domain.models.job import DispatchMode
from releaseminer.domain.models.timing import HasTiming
from releaseminer.utils import format_duration, sanitize_exception_message, utcnow

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    PLANNING = "PLANNING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


class InvocationState(str, Enum):
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"


class InvocationSummary(BaseModel):
    invocation_id: str = Field(default_factory=lambda: str(uuid.uuid1()))
    job_name: str
    dispatch_mode: DispatchMode
    asset_indices: List[int]
    scratch_dir: Path
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    state: InvocationState = InvocationState.RUNNING

    def set_finished(self):
        self.state = InvocationState.FINISHED
        self.ended_at = utcnow()

    def set_failed(self):
        self.state = InvocationState.FAILED
        self.ended_at = utcnow()


class MiningRunSummary(BaseModel, HasTiming):
    run_id: str
    target_identity: str
    state: RunState = RunState.PLANNING

    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    asset_count: int = 0
    transfer_retries: int = 0
    invocations: List[InvocationSummary] = Field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def new(cls, build_target: BuildTarget):
        return cls(run_id=str(uuid.uuid1()), target_identity=build_target.identity)

    def set_running(self, asset_count: int):
        self.state = RunState.RUNNING
        self.asset_count = asset_count

    def set_completed(self):
        self.state = RunState.COMPLETED
        self.ended_at = utcnow()

    def set_aborted(self, e: Optional[BaseException] = None):
        self.state = RunState.ABORTED
        if e is not None:
            self.error = sanitize_exception_message(f"{type(e).__name__}: {e}")
        self.ended_at = utcnow()

    def add_invocation(self, invocation: InvocationSummary):
        self.invocations.append(invocation)

    def invocation_count(self, job_name: Optional[str] = None) -> int:
        return len(
            [
                invocation
                for invocation in self.invocations
                if job_name is None or invocation.job_name == job_name
            ]
        )

    @property
    def failed_invocations(self) -> int:
        return len(
            [
                invocation
                for invocation in self.invocations
                if invocation.state == InvocationState.FAILED
            ]
        )

    @property
    def duration(self) -> timedelta:
        return (self.ended_at or utcnow()) - self.started_at

    def output_report(self):
        print(f"\nMiningRun {self.state.value} in {format_duration(self.duration)}")
        print("********************************")
        print(f"*  - Target: {self.target_identity}")
        print(f"*  - Assets: {self.asset_count}")
        print(f"*    - Transfer retries: {self.transfer_retries}")
        print(f"*  - Timings: ")
        for timing in self.timings:
            print(f"*    - {timing.name}: {format_duration(timing.duration)}")
        print(f"*  - Job invocations: {len(self.invocations)}")
        for invocation in self.invocations:
            ended_at = invocation.ended_at or utcnow()
            print(
                f"*    - {invocation.job_name} {invocation.asset_indices}: "
                f"{invocation.state.value} in {format_duration(ended_at - invocation.started_at)}"
            )
        print(f"*    - Failed invocations: {self.failed_invocations}")
        if self.error:
            print(f"*  - Error: {self.error}")
        print("********************************")
