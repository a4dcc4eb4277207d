import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from releaseminer.domain.models import (
    Asset,
    AssetRequest,
    BuildTarget,
    MinerJob,
    Plan,
    PlannedJob,
)
from releaseminer.exceptions import PlanningContradiction
from releaseminer.utils import cache_filename

logger = logging.getLogger(__name__)


class Planner:
    """Works out which assets a target needs and which job needs which.

    Assets requested by several jobs are deduplicated by their resolved url,
    so each is downloaded once.
    """

    def __init__(self, download_dir: Path):
        self.download_dir = Path(download_dir)

    def plan(
        self, build_target: BuildTarget, candidate_jobs: Sequence[MinerJob]
    ) -> Optional[Plan]:
        assets: List[Asset] = []
        assets_by_url: Dict[str, Asset] = {}
        planned_jobs: List[PlannedJob] = []

        try:
            for job in candidate_jobs:
                requests = job.needs(build_target)
                if not requests:
                    logger.info(
                        f"[{build_target.identity}] Skipping job {job.name}: nothing to do for this target"
                    )
                    continue

                needs = []
                for request in requests:
                    asset = self._get_or_add_asset(
                        build_target, request, assets, assets_by_url
                    )
                    if asset.index not in needs:
                        needs.append(asset.index)

                planned_jobs.append(PlannedJob(job=job, needs=needs))
        except PlanningContradiction as e:
            logger.error(f"[{build_target.identity}] Cannot plan this run: {e}")
            return None

        if not planned_jobs:
            logger.info(f"[{build_target.identity}] No jobs to run")

        return Plan(build_target=build_target, assets=assets, jobs=planned_jobs)

    def _get_or_add_asset(
        self,
        build_target: BuildTarget,
        request: AssetRequest,
        assets: List[Asset],
        assets_by_url: Dict[str, Asset],
    ) -> Asset:
        url = build_target.resolve_url(request.url)
        if existing := assets_by_url.get(url):
            if existing.metadata != request.metadata:
                raise PlanningContradiction(
                    f"Asset {url} requested with conflicting metadata: "
                    f"{existing.metadata} != {request.metadata}"
                )
            return existing

        asset = Asset(
            index=len(assets),
            url=url,
            path=self.download_dir / cache_filename(url),
            metadata=request.metadata,
        )
        assets.append(asset)
        assets_by_url[url] = asset
        return asset
