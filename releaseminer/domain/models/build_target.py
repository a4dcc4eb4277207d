from typing import Dict, Optional
from urllib.parse import urljoin

from pydantic import Field

from releaseminer.domain.models.base import BaseModel


class PlatformInfo(BaseModel):
    # Version the platform's build info claims to describe. Can be absent
    # for old releases.
    version: Optional[str] = None
    modules: Dict[str, str] = Field(default_factory=dict)

    def get_module(self, key: str) -> Optional[str]:
        return self.modules.get(key)


class BuildTarget(BaseModel):
    """One release version to mine."""

    version: str
    build_id: Optional[str] = None
    base_url: str = ""
    platforms: Dict[str, PlatformInfo] = Field(default_factory=dict)

    @property
    def identity(self) -> str:
        return self.version

    def resolve_url(self, locator: str) -> str:
        if not self.base_url:
            return locator
        return urljoin(self.base_url, locator)

    def __str__(self):
        if self.build_id:
            return f"{self.version} ({self.build_id})"
        return self.version
