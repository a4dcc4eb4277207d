from enum import Enum
from pathlib import Path

from pydantic import Field

from releaseminer.domain.models.base import FrozenModel
from releaseminer.utils import filename_from_url


class AssetState(str, Enum):
    PENDING = "PENDING"
    DOWNLOADING = "DOWNLOADING"
    RETRYING = "RETRYING"
    READY = "READY"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (AssetState.READY, AssetState.FAILED)


class AssetRequest(FrozenModel):
    """A file a job needs. `url` may be relative to the target's base_url."""

    url: str
    metadata: dict = Field(default_factory=dict)

    @property
    def pre_extract(self) -> bool:
        return self.metadata.get("pre_extract", True)


class Asset(FrozenModel):
    index: int
    url: str
    path: Path
    metadata: dict = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return filename_from_url(self.url)

    @property
    def pre_extract(self) -> bool:
        return self.metadata.get("pre_extract", True)

    def __str__(self):
        return f"#{self.index} {self.name}"
