"""Two stage archive extraction.

Installer packages wrap the files we're after in an inner payload archive.
The first stage unwraps that payload next to the downloaded archive, in
`<archive dir>/<archive stem>/`, where it stays as a cache for later runs.
The second stage copies a filtered subset out of the payload.
"""
import logging
import os
import shutil
import tempfile
import threading
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Optional

from releaseminer.cancellation import CancellationToken
from releaseminer.exceptions import ExtractionError, ExtractionFormatUnrecognized

from .seven_zip import SevenZip

logger = logging.getLogger(__name__)


class ArchiveFormat(str, Enum):
    INSTALLER_PACKAGE = ".pkg"
    SELF_EXTRACTING = ".exe"
    COMPRESSED_TAR = ".xz"

    @classmethod
    def from_path(cls, path: Path) -> "ArchiveFormat":
        suffix = Path(path).suffix.lower()
        try:
            return cls(suffix)
        except ValueError:
            raise ExtractionFormatUnrecognized(
                f"Unrecognized archive type '{suffix}' for {Path(path).name}"
            ) from None

    def payload_name(self, archive_path: Path) -> Optional[str]:
        """Name of the inner payload, or None when the archive is its own payload."""
        if self == ArchiveFormat.INSTALLER_PACKAGE:
            return "Payload~"
        elif self == ArchiveFormat.COMPRESSED_TAR:
            return Path(archive_path).stem
        elif self == ArchiveFormat.SELF_EXTRACTING:
            return None
        raise ValueError(f"Unknown archive format {self}")


class StagedExtractor:
    def __init__(self, seven_zip: Optional[SevenZip] = None):
        self.seven_zip = seven_zip or SevenZip()
        self._locks: Dict[Path, threading.Lock] = {}
        self._locks_lock = threading.Lock()

    def _lock_for(self, archive_path: Path) -> threading.Lock:
        key = Path(archive_path).resolve()
        with self._locks_lock:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    @staticmethod
    def payload_directory(archive_path: Path) -> Path:
        archive_path = Path(archive_path)
        return archive_path.parent / archive_path.stem

    def extract_first_stage(
        self,
        archive_path: Path,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Path:
        """Unwrap the inner payload of `archive_path` once and return its path."""
        archive_path = Path(archive_path)
        payload_name = ArchiveFormat.from_path(archive_path).payload_name(archive_path)
        if payload_name is None:
            return archive_path

        payload_directory = self.payload_directory(archive_path)
        payload_path = payload_directory / payload_name
        if payload_path.exists():
            return payload_path

        with self._lock_for(archive_path):
            if payload_path.exists():
                return payload_path

            logger.info(f"Pre-extracting {archive_path.name}")
            staging_directory = Path(
                tempfile.mkdtemp(
                    prefix=f".{payload_directory.name}-", dir=archive_path.parent
                )
            )
            try:
                self.seven_zip.extract(
                    archive_path,
                    staging_directory,
                    [payload_name],
                    flat=True,
                    cancellation_token=cancellation_token,
                )
                extracted = staging_directory / payload_name
                if not extracted.exists():
                    raise ExtractionError(
                        f"{archive_path.name} doesn't contain {payload_name}"
                    )

                payload_directory.mkdir(parents=True, exist_ok=True)
                # The payload only shows up once it is complete
                os.replace(extracted, payload_path)
            finally:
                shutil.rmtree(staging_directory, ignore_errors=True)

            logger.info(f"Pre-extract of {archive_path.name} complete")

        return payload_path

    def extract_filtered(
        self,
        payload_path: Path,
        destination: Path,
        patterns: Iterable[str],
        flatten: bool = True,
        cancellation_token: Optional[CancellationToken] = None,
    ):
        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)
        self.seven_zip.extract(
            payload_path,
            destination,
            list(patterns),
            flat=flatten,
            cancellation_token=cancellation_token,
        )

    def extract(
        self,
        archive_path: Path,
        destination: Path,
        patterns: Iterable[str],
        flatten: bool = True,
        cancellation_token: Optional[CancellationToken] = None,
    ):
        payload_path = self.extract_first_stage(archive_path, cancellation_token)
        self.extract_filtered(
            payload_path, destination, patterns, flatten, cancellation_token
        )


_extractor = None


def get_extractor() -> StagedExtractor:
    """Process wide extractor. Sharing it shares the per-archive locks."""
    global _extractor

    if not _extractor:
        _extractor = StagedExtractor()
    return _extractor
