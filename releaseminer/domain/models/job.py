from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List, Optional, TYPE_CHECKING

from .asset import Asset, AssetRequest
from .build_target import BuildTarget

if TYPE_CHECKING:
    from releaseminer.cancellation import CancellationToken


class DispatchMode(str, Enum):
    # Invoked once with all needed assets, after every one of them is ready
    BATCH = "batch"
    # Invoked once per needed asset, as soon as that asset is ready
    INCREMENTAL = "incremental"


class MinerJob(ABC):
    dispatch_mode: DispatchMode = DispatchMode.BATCH

    def __init__(
        self, name: str, dispatch_mode: Optional[DispatchMode] = None, **kwargs
    ):
        self.name = name
        if dispatch_mode is not None:
            self.dispatch_mode = DispatchMode(dispatch_mode)

    @abstractmethod
    def needs(self, build_target: BuildTarget) -> List[AssetRequest]:
        """Assets required for `build_target`. An empty list means the job
        doesn't apply to this target.

        Raise `PlanningContradiction` when the prerequisites exist but
        disagree with each other."""
        pass

    @abstractmethod
    def execute(
        self,
        build_target: BuildTarget,
        scratch_dir: Path,
        assets: List[Asset],
        paths: List[Path],
        cancellation_token: "CancellationToken",
    ) -> None:
        pass

    def __repr__(self):
        return f'<{self.__class__.__name__} name="{self.name}" mode="{self.dispatch_mode.value}">'
