from .models import (
    Asset,
    AssetRequest,
    AssetState,
    BuildTarget,
    DispatchMode,
    MinerJob,
    Plan,
    PlannedJob,
)

__all__ = [
    "Asset",
    "AssetRequest",
    "AssetState",
    "BuildTarget",
    "DispatchMode",
    "MinerJob",
    "Plan",
    "PlannedJob",
]
