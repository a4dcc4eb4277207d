from .asset import Asset, AssetRequest, AssetState
from .build_target import BuildTarget, PlatformInfo
from .job import DispatchMode, MinerJob
from .plan import Plan, PlannedJob
from .dispatch_ledger import Dispatch, DispatchLedger
from .run import InvocationState, InvocationSummary, MiningRunSummary, RunState

__all__ = [
    "Asset",
    "AssetRequest",
    "AssetState",
    "BuildTarget",
    "PlatformInfo",
    "DispatchMode",
    "MinerJob",
    "Plan",
    "PlannedJob",
    "Dispatch",
    "DispatchLedger",
    "InvocationState",
    "InvocationSummary",
    "MiningRunSummary",
    "RunState",
]
