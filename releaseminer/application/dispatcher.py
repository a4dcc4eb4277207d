import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, NamedTuple, Optional

from releaseminer.application.scratch import ScratchRoot
from releaseminer.cancellation import CancellationToken
from releaseminer.domain.models import (
    Asset,
    Dispatch,
    DispatchLedger,
    DispatchMode,
    InvocationState,
    InvocationSummary,
    MiningRunSummary,
    Plan,
)
from releaseminer.domain.models.event import EventBus
from releaseminer.domain.models.run import (
    AssetReady,
    AssetRetrying,
    JobFinished,
    JobInvoked,
    RunAborted,
    RunCompleted,
    RunStarted,
)
from releaseminer.exceptions import (
    JobFailure,
    MinerError,
    OperationCancelled,
    TransferFatal,
    TransferTransient,
)
from releaseminer.utils import get_concurrency

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 5.0

TransferFunc = Callable[[Asset, CancellationToken], None]
PrepareFunc = Callable[[Path, CancellationToken], Path]


class _Transfer(NamedTuple):
    asset: Asset


class _JobInvocation(NamedTuple):
    dispatch: Dispatch
    invocation: InvocationSummary


class Dispatcher:
    """Downloads every asset of a plan and fires jobs as their needs are met.

    Transfers and job bodies run on thread pools. The dispatch loop itself
    runs on the calling thread and is the only place that touches the ledger.
    """

    def __init__(
        self,
        transfer: TransferFunc,
        prepare: Optional[PrepareFunc] = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_transient_retries: Optional[int] = None,
        max_workers: Optional[int] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.transfer = transfer
        self.prepare = prepare
        self.retry_delay = retry_delay
        # None keeps retrying a connection reset forever
        self.max_transient_retries = max_transient_retries
        self.max_workers = max_workers or get_concurrency()
        self.event_bus = event_bus or EventBus()

    def dispatch(
        self,
        plan: Plan,
        scratch: ScratchRoot,
        cancellation_token: Optional[CancellationToken] = None,
        summary: Optional[MiningRunSummary] = None,
    ) -> MiningRunSummary:
        summary = summary or MiningRunSummary.new(plan.build_target)
        run = DispatchRun(self, plan, scratch, cancellation_token, summary)
        return run.execute()


class DispatchRun:
    def __init__(
        self,
        dispatcher: Dispatcher,
        plan: Plan,
        scratch: ScratchRoot,
        cancellation_token: Optional[CancellationToken],
        summary: MiningRunSummary,
    ):
        self.dispatcher = dispatcher
        self.plan = plan
        self.scratch = scratch
        self.summary = summary
        self.ledger = DispatchLedger(plan)
        self.outstanding: Dict[Future, object] = {}
        # Linked, so cancelling the run leaves the caller's token alone
        self.cancellation_token = CancellationToken.linked(cancellation_token)
        self.version = plan.build_target.identity

        self._transfer_pool: Optional[ThreadPoolExecutor] = None
        self._job_pool: Optional[ThreadPoolExecutor] = None

    def execute(self) -> MiningRunSummary:
        self._transfer_pool = ThreadPoolExecutor(
            max_workers=max(1, len(self.plan.assets)),
            thread_name_prefix="releaseminer-transfer",
        )
        self._job_pool = ThreadPoolExecutor(
            max_workers=self.dispatcher.max_workers,
            thread_name_prefix="releaseminer-job",
        )

        self.summary.set_running(len(self.plan.assets))
        self._publish(
            RunStarted(
                run_id=self.summary.run_id,
                target_identity=self.version,
                asset_count=len(self.plan.assets),
            )
        )

        try:
            with self.summary.record_timing("dispatch"):
                error = self._loop()
        except BaseException:
            # Interrupted, e.g. by Ctrl-C. Stop the workers before waiting on them
            self.cancellation_token.cancel()
            raise
        finally:
            self.cancellation_token.detach()
            self._transfer_pool.shutdown(wait=True, cancel_futures=True)
            self._job_pool.shutdown(wait=True, cancel_futures=True)

        if error is not None:
            self.summary.set_aborted(error)
            self._publish(
                RunAborted(
                    run_id=self.summary.run_id,
                    target_identity=self.version,
                    error=self.summary.error,
                )
            )
            raise error

        self.summary.set_completed()
        self._publish(
            RunCompleted(run_id=self.summary.run_id, target_identity=self.version)
        )
        return self.summary

    def _loop(self) -> Optional[BaseException]:
        """Run until everything finished. Returns the error that aborted the
        run, if any."""
        for asset in self.plan.assets:
            self._start_transfer(asset)

        while self.outstanding:
            done, _ = wait(list(self.outstanding), return_when=FIRST_COMPLETED)
            for future in done:
                operation = self.outstanding.pop(future)
                if isinstance(operation, _Transfer):
                    error = self._on_transfer_done(future, operation)
                else:
                    error = self._on_job_done(future, operation)

                if error is not None:
                    return self._abort(error)

        if not self.ledger.all_ready or self.ledger.unfired_batch_jobs:
            # Only possible when a plan was changed behind our back
            return self._abort(
                MinerError(f"[{self.version}] Run ended with unsatisfied jobs")
            )

        logger.info(f"[{self.version}] All transfers and jobs completed")
        return None

    def _start_transfer(self, asset: Asset, delay: float = 0):
        self.ledger.mark_downloading(asset.index)
        future = self._transfer_pool.submit(self._transfer_asset, asset, delay)
        self.outstanding[future] = _Transfer(asset)

    def _transfer_asset(self, asset: Asset, delay: float):
        if delay:
            self.cancellation_token.sleep(delay)

        self.dispatcher.transfer(asset, self.cancellation_token)

        if self.dispatcher.prepare and asset.pre_extract:
            # Unwrap now, so jobs sharing this asset don't race on it later
            self.dispatcher.prepare(asset.path, self.cancellation_token)

    def _on_transfer_done(
        self, future: Future, operation: _Transfer
    ) -> Optional[BaseException]:
        asset = operation.asset
        exception = future.exception()

        if exception is None:
            self._on_asset_ready(asset)
            return None

        if isinstance(exception, TransferTransient):
            retries = self.ledger.retries[asset.index]
            max_retries = self.dispatcher.max_transient_retries
            if max_retries is not None and retries >= max_retries:
                self.ledger.mark_failed(asset.index)
                error = TransferFatal(
                    f"Giving up on {asset.url} after {retries} retries",
                    url=asset.url,
                )
                error.__cause__ = exception
                return error

            attempt = self.ledger.mark_retrying(asset.index)
            self.summary.transfer_retries += 1
            logger.warning(
                f"[{self.version}] Failed to download {asset.url}, "
                f"waiting {self.dispatcher.retry_delay} seconds before retrying..."
            )
            self._publish(
                AssetRetrying(
                    run_id=self.summary.run_id,
                    asset=asset,
                    attempt=attempt,
                    reason=str(exception),
                )
            )
            self._start_transfer(asset, delay=self.dispatcher.retry_delay)
            return None

        self.ledger.mark_failed(asset.index)
        if not isinstance(exception, OperationCancelled):
            logger.error(
                f"[{self.version}] Transfer of {asset.url} failed: {exception}"
            )
        return exception

    def _on_asset_ready(self, asset: Asset):
        dispatches = self.ledger.mark_ready(asset.index)
        logger.debug(f"[{self.version}] Asset {asset} is ready")
        self._publish(AssetReady(run_id=self.summary.run_id, asset=asset))

        for dispatch in dispatches:
            self._start_job(dispatch)

    def _start_job(self, dispatch: Dispatch):
        planned_job = dispatch.planned_job
        mode = planned_job.dispatch_mode
        if mode == DispatchMode.INCREMENTAL:
            scratch_dir = self.scratch.allocate(f"i-{dispatch.asset_indices[0]}")
        elif mode == DispatchMode.BATCH:
            scratch_dir = self.scratch.allocate("b")
        else:
            raise ValueError(f"Unknown dispatch mode {mode}")

        invocation = InvocationSummary(
            job_name=planned_job.name,
            dispatch_mode=mode,
            asset_indices=dispatch.asset_indices,
            scratch_dir=scratch_dir,
        )
        self.summary.add_invocation(invocation)

        logger.debug(
            f"[{self.version}] Starting job {planned_job.name} for assets "
            f"{dispatch.asset_indices} (local dir: {scratch_dir.name})"
        )
        self._publish(
            JobInvoked(
                run_id=self.summary.run_id,
                job_name=planned_job.name,
                asset_indices=dispatch.asset_indices,
                scratch_dir=scratch_dir,
            )
        )

        future = self._job_pool.submit(self._run_job, dispatch, scratch_dir)
        self.outstanding[future] = _JobInvocation(dispatch, invocation)

    def _run_job(self, dispatch: Dispatch, scratch_dir: Path):
        self.cancellation_token.raise_if_cancelled()

        assets = [self.plan.assets[index] for index in dispatch.asset_indices]
        dispatch.planned_job.job.execute(
            self.plan.build_target,
            scratch_dir,
            assets,
            [asset.path for asset in assets],
            self.cancellation_token,
        )

    def _on_job_done(
        self, future: Future, operation: _JobInvocation
    ) -> Optional[BaseException]:
        _, invocation = operation
        exception = self._finish_invocation(future, invocation)

        if exception is None or isinstance(exception, OperationCancelled):
            return exception

        logger.error(
            f"[{self.version}] Job {invocation.job_name} failed: {exception}"
        )
        if isinstance(exception, MinerError):
            return exception

        error = JobFailure(
            f"Job {invocation.job_name} failed: {exception}",
            job_name=invocation.job_name,
        )
        error.__cause__ = exception
        return error

    def _finish_invocation(
        self, future: Future, invocation: InvocationSummary
    ) -> Optional[BaseException]:
        """Record how a job future ended. Returns its exception, if any."""
        if future.cancelled():
            exception = OperationCancelled(
                f"Job {invocation.job_name} never started"
            )
        else:
            exception = future.exception()

        if exception is None:
            invocation.set_finished()
        else:
            invocation.set_failed()

        self._publish(
            JobFinished(
                run_id=self.summary.run_id,
                job_name=invocation.job_name,
                asset_indices=invocation.asset_indices,
                succeeded=invocation.state == InvocationState.FINISHED,
            )
        )
        return exception

    def _abort(self, error: BaseException) -> BaseException:
        """Cancel everything still in flight and wait for it to unwind.

        Returns the error to raise to the caller. A cancellation we caused
        ourselves never hides the error that caused it."""
        if isinstance(error, OperationCancelled):
            logger.warning(f"[{self.version}] Run cancelled, unwinding")
        else:
            logger.error(f"[{self.version}] Aborting run: {error}")

        self.cancellation_token.cancel()

        for future in self.outstanding:
            # Jobs still queued never start
            future.cancel()
        wait(list(self.outstanding))

        for future, operation in self.outstanding.items():
            if isinstance(operation, _Transfer):
                if not self.ledger.state_of(operation.asset.index).is_terminal:
                    self.ledger.mark_failed(operation.asset.index)
            else:
                self._finish_invocation(future, operation.invocation)
        self.outstanding.clear()

        if isinstance(error, OperationCancelled):
            return OperationCancelled(f"Run for {self.version} was cancelled")
        return error

    def _publish(self, event):
        self.dispatcher.event_bus.dispatch(event)
