from .events import (
    AssetReady,
    AssetRetrying,
    JobFinished,
    JobInvoked,
    RunAborted,
    RunCompleted,
    RunStarted,
)
from .run_summary import (
    InvocationState,
    InvocationSummary,
    MiningRunSummary,
    RunState,
)

__all__ = [
    "AssetReady",
    "AssetRetrying",
    "JobFinished",
    "JobInvoked",
    "RunAborted",
    "RunCompleted",
    "RunStarted",
    "InvocationState",
    "InvocationSummary",
    "MiningRunSummary",
    "RunState",
]
