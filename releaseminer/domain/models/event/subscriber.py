from typing import TYPE_CHECKING

from .domain_event import DomainEvent

if TYPE_CHECKING:
    from releaseminer.domain.models.run.events import (
        AssetReady,
        AssetRetrying,
        JobFinished,
        JobInvoked,
        RunAborted,
        RunCompleted,
        RunStarted,
    )


class Subscriber:
    def __init__(self, config: dict = None):
        self.config = config or {}

    def on_run_started(self, event: "RunStarted"):
        pass

    def on_asset_ready(self, event: "AssetReady"):
        pass

    def on_asset_retrying(self, event: "AssetRetrying"):
        pass

    def on_job_invoked(self, event: "JobInvoked"):
        pass

    def on_job_finished(self, event: "JobFinished"):
        pass

    def on_run_completed(self, event: "RunCompleted"):
        pass

    def on_run_aborted(self, event: "RunAborted"):
        pass

    def handle(self, event: DomainEvent):
        # Imported here; the run events import this package
        from releaseminer.domain.models.run.events import (
            AssetReady,
            AssetRetrying,
            JobFinished,
            JobInvoked,
            RunAborted,
            RunCompleted,
            RunStarted,
        )

        if isinstance(event, RunStarted):
            self.on_run_started(event)
        elif isinstance(event, AssetReady):
            self.on_asset_ready(event)
        elif isinstance(event, AssetRetrying):
            self.on_asset_retrying(event)
        elif isinstance(event, JobInvoked):
            self.on_job_invoked(event)
        elif isinstance(event, JobFinished):
            self.on_job_finished(event)
        elif isinstance(event, RunCompleted):
            self.on_run_completed(event)
        elif isinstance(event, RunAborted):
            self.on_run_aborted(event)
