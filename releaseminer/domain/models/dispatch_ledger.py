from datetime import datetime
from typing import Dict, List, NamedTuple, Set

from releaseminer.utils import utcnow

from .asset import AssetState
from .job import DispatchMode
from .plan import Plan, PlannedJob


class Dispatch(NamedTuple):
    planned_job: PlannedJob
    asset_indices: List[int]


class DispatchLedger:
    """Tracks which assets are ready and which jobs may run.

    Not thread safe. Only the dispatch loop touches it.
    """

    def __init__(self, plan: Plan):
        self.plan = plan
        self.asset_states: Dict[int, AssetState] = {
            asset.index: AssetState.PENDING for asset in plan.assets
        }
        self.ready_at: Dict[int, datetime] = {}
        self.retries: Dict[int, int] = {asset.index: 0 for asset in plan.assets}

        self._satisfied: Dict[int, int] = {}
        self._fired: Set[int] = set()
        for job_idx, planned_job in enumerate(plan.jobs):
            if planned_job.dispatch_mode == DispatchMode.BATCH:
                self._satisfied[job_idx] = 0

    def state_of(self, index: int) -> AssetState:
        return self.asset_states[index]

    def mark_downloading(self, index: int):
        self._transition(index, AssetState.DOWNLOADING)

    def mark_retrying(self, index: int) -> int:
        self._transition(index, AssetState.RETRYING)
        self.retries[index] += 1
        return self.retries[index]

    def mark_failed(self, index: int):
        self._transition(index, AssetState.FAILED)

    def mark_ready(self, index: int) -> List[Dispatch]:
        """Mark asset `index` ready and return the job invocations that are
        now due, in plan order."""
        self._transition(index, AssetState.READY)
        self.ready_at[index] = utcnow()

        dispatches = []
        for job_idx, planned_job in enumerate(self.plan.jobs):
            if index not in planned_job.needs:
                continue

            mode = planned_job.dispatch_mode
            if mode == DispatchMode.INCREMENTAL:
                dispatches.append(Dispatch(planned_job, [index]))
            elif mode == DispatchMode.BATCH:
                if job_idx in self._fired:
                    continue
                self._satisfied[job_idx] += 1
                if self._satisfied[job_idx] == len(planned_job.needs):
                    self._fired.add(job_idx)
                    dispatches.append(Dispatch(planned_job, list(planned_job.needs)))
            else:
                raise ValueError(f"Unknown dispatch mode {mode}")
        return dispatches

    def _transition(self, index: int, state: AssetState):
        current = self.asset_states[index]
        if current.is_terminal:
            raise ValueError(
                f"Asset #{index} is already {current.value}, cannot become {state.value}"
            )
        self.asset_states[index] = state

    @property
    def all_ready(self) -> bool:
        return all(state == AssetState.READY for state in self.asset_states.values())

    @property
    def unfired_batch_jobs(self) -> List[PlannedJob]:
        return [
            self.plan.jobs[job_idx]
            for job_idx in self._satisfied
            if job_idx not in self._fired
        ]
