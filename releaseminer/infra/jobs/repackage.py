import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from pydantic import model_validator

from releaseminer.cancellation import CancellationToken
from releaseminer.domain.models import (
    Asset,
    AssetRequest,
    BuildTarget,
    DispatchMode,
    MinerJob,
)
from releaseminer.domain.models.base import BaseModel
from releaseminer.exceptions import (
    ConfigurationError,
    JobFailure,
    PlanningContradiction,
)
from releaseminer.infra.extract import StagedExtractor, get_extractor

logger = logging.getLogger(__name__)


class SourceSpec(BaseModel):
    """One module of the release, looked up on the first platform that has it."""

    module: str
    platforms: List[str]

    @model_validator(mode="before")
    @classmethod
    def single_platform(cls, values):
        if isinstance(values, dict) and "platform" in values:
            values = dict(values)
            values["platforms"] = [values.pop("platform")]
        return values


class RepackageJob(MinerJob):
    """Extracts a filtered set of paths from release archives and zips them.

    Batch mode produces one zip from all `sources`. Incremental mode produces
    one zip per asset, so `output` must contain `{platform}`, and `{module}`
    too when the sources name more than one module.
    """

    def __init__(
        self,
        name: str,
        sources: Sequence[Union[dict, SourceSpec]],
        patterns: Sequence[str],
        output: str,
        mode: Union[str, DispatchMode] = DispatchMode.BATCH,
        flatten: bool = False,
        root: Optional[str] = None,
        output_dir: Union[str, Path] = ".",
        extractor: Optional[StagedExtractor] = None,
        **kwargs,
    ):
        super().__init__(name, dispatch_mode=DispatchMode(mode), **kwargs)
        self.sources = [
            source if isinstance(source, SourceSpec) else SourceSpec(**source)
            for source in sources
        ]
        self.patterns = list(patterns)
        self.output = output
        self.flatten = flatten
        # Directory inside the extracted tree that becomes the zip root
        self.root = root
        self.output_dir = Path(output_dir)
        self._extractor = extractor

        if self.dispatch_mode == DispatchMode.INCREMENTAL:
            self._check_output_is_per_asset()

    def _check_output_is_per_asset(self):
        missing = []
        if "{platform}" not in self.output:
            missing.append("{platform}")
        modules = {source.module for source in self.sources}
        if len(modules) > 1 and "{module}" not in self.output:
            missing.append("{module}")
        if missing:
            raise ConfigurationError(
                f"Incremental job '{self.name}' writes one zip per asset, "
                f"its output '{self.output}' must contain {' and '.join(missing)}"
            )

    @property
    def extractor(self) -> StagedExtractor:
        return self._extractor or get_extractor()

    def output_path(
        self,
        build_target: BuildTarget,
        platform: Optional[str] = None,
        module: Optional[str] = None,
    ) -> Path:
        return self.output_dir / self.output.format(
            version=build_target.version,
            build_id=build_target.build_id or "",
            platform=platform or "",
            module=module or "",
        )

    def _available(
        self, build_target: BuildTarget, source: SourceSpec
    ) -> List[Tuple[str, str]]:
        available = []
        for platform in source.platforms:
            info = build_target.platforms.get(platform)
            if info is None or not info.get_module(source.module):
                continue

            if info.version is not None and info.version != build_target.version:
                raise PlanningContradiction(
                    f"{platform} build info describes {info.version}, "
                    f"expected {build_target.version}"
                )
            available.append((platform, info.get_module(source.module)))
        return available

    def needs(self, build_target: BuildTarget) -> List[AssetRequest]:
        if self.dispatch_mode == DispatchMode.BATCH:
            if self.output_path(build_target).exists():
                return []

            requests = []
            for source in self.sources:
                available = self._available(build_target, source)
                if not available:
                    logger.warning(
                        f"[{build_target.identity}] Could not get URL for "
                        f"{source.module} on {', '.join(source.platforms)}"
                    )
                    return []

                platform, url = available[0]
                requests.append(
                    AssetRequest(
                        url=url,
                        metadata={"platform": platform, "module": source.module},
                    )
                )
            return requests

        elif self.dispatch_mode == DispatchMode.INCREMENTAL:
            requests = []
            for source in self.sources:
                for platform, url in self._available(build_target, source):
                    output_path = self.output_path(
                        build_target, platform, source.module
                    )
                    if output_path.exists():
                        continue
                    requests.append(
                        AssetRequest(
                            url=url,
                            metadata={"platform": platform, "module": source.module},
                        )
                    )
            return requests

        raise ValueError(f"Unknown dispatch mode {self.dispatch_mode}")

    def execute(
        self,
        build_target: BuildTarget,
        scratch_dir: Path,
        assets: List[Asset],
        paths: List[Path],
        cancellation_token: CancellationToken,
    ) -> None:
        if self.dispatch_mode == DispatchMode.INCREMENTAL:
            asset = assets[0]
            output_path = self.output_path(
                build_target,
                platform=asset.metadata.get("platform"),
                module=asset.metadata.get("module"),
            )
        else:
            output_path = self.output_path(build_target)

        logger.info(f"[{build_target.identity}] Extracting {self.name}")

        content_dir = scratch_dir / "content"
        for path in paths:
            cancellation_token.raise_if_cancelled()
            self.extractor.extract(
                path,
                content_dir,
                self.patterns,
                flatten=self.flatten,
                cancellation_token=cancellation_token,
            )

        root_dir = content_dir / self.root if self.root else content_dir
        if not root_dir.is_dir() or not any(
            child.is_file() for child in root_dir.rglob("*")
        ):
            raise JobFailure(
                f"{self.name}: extracted directory is empty", job_name=self.name
            )

        cancellation_token.raise_if_cancelled()
        write_zip(root_dir, output_path)

        logger.info(f"[{build_target.identity}] Wrote {output_path}")


def write_zip(root_dir: Path, output_path: Path) -> Path:
    """Zip `root_dir` to `output_path`. The zip only appears once complete."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    # Private staging directory, so concurrent writers never share a partial file
    staging = Path(
        tempfile.mkdtemp(prefix=f".{output_path.name}-", dir=output_path.parent)
    )
    try:
        partial = shutil.make_archive(
            str(staging / "archive"), "zip", root_dir=root_dir
        )
        os.replace(partial, output_path)
    finally:
        shutil.rmtree(staging, ignore_errors=True)
    return output_path
