from typing import List

from pydantic import model_validator

from releaseminer.domain.models.asset import Asset
from releaseminer.domain.models.base import BaseModel
from releaseminer.domain.models.build_target import BuildTarget
from releaseminer.domain.models.job import DispatchMode, MinerJob


class PlannedJob(BaseModel):
    job: MinerJob
    needs: List[int]

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def dispatch_mode(self):
        return self.job.dispatch_mode


class Plan(BaseModel):
    build_target: BuildTarget
    assets: List[Asset]
    jobs: List[PlannedJob]

    @model_validator(mode="after")
    def check_needs(self):
        for position, asset in enumerate(self.assets):
            if asset.index != position:
                raise ValueError(
                    f"Asset {asset.url} has index {asset.index}, expected {position}"
                )
        for planned_job in self.jobs:
            if len(set(planned_job.needs)) != len(planned_job.needs):
                raise ValueError(f"Job '{planned_job.name}' needs an asset twice")
            is_batch = planned_job.dispatch_mode == DispatchMode.BATCH
            if is_batch and not planned_job.needs:
                # No asset ever becomes ready for it, so it would never fire
                raise ValueError(f"Batch job '{planned_job.name}' needs no assets")
            for index in planned_job.needs:
                if not 0 <= index < len(self.assets):
                    raise ValueError(
                        f"Job '{planned_job.name}' needs unknown asset #{index}"
                    )
        return self

    def output_report(self):
        print(f"\nPlan for {self.build_target}")
        print("********************************")
        print(f"*  - Assets: {len(self.assets)}")
        for asset in self.assets:
            print(f"*    - #{asset.index} {asset.url}")
        print(f"*  - Jobs: {len(self.jobs)}")
        for planned_job in self.jobs:
            needs = ", ".join(f"#{index}" for index in planned_job.needs)
            print(
                f"*    - {planned_job.name} ({planned_job.dispatch_mode.value}): {needs}"
            )
        print("********************************")
