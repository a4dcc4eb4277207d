from pathlib import Path
from typing import ClassVar, List, Optional

from releaseminer.domain.models.asset import Asset
from releaseminer.domain.models.event.domain_event import DomainEvent


class RunStarted(DomainEvent):
    run_id: str
    target_identity: str
    asset_count: int
    event_type: ClassVar[str] = "run_started"


class AssetReady(DomainEvent):
    run_id: str
    asset: Asset
    event_type: ClassVar[str] = "asset_ready"


class AssetRetrying(DomainEvent):
    run_id: str
    asset: Asset
    attempt: int
    reason: str
    event_type: ClassVar[str] = "asset_retrying"


class JobInvoked(DomainEvent):
    run_id: str
    job_name: str
    asset_indices: List[int]
    scratch_dir: Path
    event_type: ClassVar[str] = "job_invoked"


class JobFinished(DomainEvent):
    run_id: str
    job_name: str
    asset_indices: List[int]
    succeeded: bool
    event_type: ClassVar[str] = "job_finished"


class RunCompleted(DomainEvent):
    run_id: str
    target_identity: str
    event_type: ClassVar[str] = "run_completed"


class RunAborted(DomainEvent):
    run_id: str
    target_identity: str
    error: Optional[str] = None
    event_type: ClassVar[str] = "run_aborted"
