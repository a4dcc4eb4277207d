import logging
from pathlib import Path
from typing import List, Optional, Tuple

from releaseminer.application.dispatcher import DEFAULT_RETRY_DELAY, Dispatcher
from releaseminer.application.scratch import ScratchRoot
from releaseminer.cancellation import CancellationToken
from releaseminer.domain.models import (
    Asset,
    BuildTarget,
    MinerJob,
    MiningRunSummary,
    Plan,
)
from releaseminer.domain.models.event import EventBus
from releaseminer.domain.services.planner import Planner
from releaseminer.infra.extract import StagedExtractor, get_extractor
from releaseminer.infra.fetch import fetch
from releaseminer.infra.fetch.http import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


class MiningEngine:
    """Mines one build target at a time with the registered jobs."""

    def __init__(
        self,
        download_dir: Path,
        scratch_dir: Optional[Path] = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_transient_retries: Optional[int] = None,
        pre_extract: bool = True,
        max_workers: Optional[int] = None,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
        extractor: Optional[StagedExtractor] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.download_dir = Path(download_dir)
        self.scratch_dir = scratch_dir
        self.timeout = timeout
        self.extractor = extractor or get_extractor()
        self.event_bus = event_bus or EventBus()
        self.jobs: List[MinerJob] = []

        self.dispatcher = Dispatcher(
            transfer=self._fetch_asset,
            prepare=self.extractor.extract_first_stage if pre_extract else None,
            retry_delay=retry_delay,
            max_transient_retries=max_transient_retries,
            max_workers=max_workers,
            event_bus=self.event_bus,
        )

    def add_job(self, job: MinerJob):
        self.jobs.append(job)

    def _fetch_asset(self, asset: Asset, cancellation_token: CancellationToken):
        fetch(asset.url, asset.path, cancellation_token, timeout=self.timeout)

    def get_download_dir(self, build_target: BuildTarget) -> Path:
        return self.download_dir / build_target.identity

    def plan(self, build_target: BuildTarget) -> Optional[Plan]:
        planner = Planner(self.get_download_dir(build_target))
        return planner.plan(build_target, self.jobs)

    def mine(
        self,
        build_target: BuildTarget,
        cancellation_token: Optional[CancellationToken] = None,
        dry_run: bool = False,
    ) -> MiningRunSummary:
        """Plan and run all jobs for `build_target`.

        Raises the error that aborted the run. When no consistent plan can be
        made, nothing is downloaded and the returned summary is ABORTED.
        """
        summary = MiningRunSummary.new(build_target)

        with summary.record_timing("plan"):
            plan = self.plan(build_target)

        if plan is None:
            summary.set_aborted()
            summary.error = "No consistent plan for this target"
            return summary

        if dry_run:
            plan.output_report()
            summary.set_completed()
            return summary

        logger.info(
            f"[{build_target.identity}] Mining {len(plan.assets)} assets "
            f"for {len(plan.jobs)} jobs"
        )

        with ScratchRoot(build_target.identity, self.scratch_dir) as scratch:
            return self.dispatcher.dispatch(
                plan, scratch, cancellation_token=cancellation_token, summary=summary
            )
