import itertools
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def get_default_scratch_base() -> Path:
    return Path(tempfile.gettempdir()) / "releaseminer"


class ScratchRoot:
    """Temporary root for one run. Every job invocation gets a fresh
    subdirectory of its own; the whole root is removed when the run ends,
    however it ends.

        with ScratchRoot("2021.3.1f1") as scratch:
            job_dir = scratch.allocate("b")
    """

    def __init__(self, identity: str, base_dir: Optional[Path] = None):
        self.path = Path(base_dir or get_default_scratch_base()) / identity
        self._counter = itertools.count()

    def create(self) -> Path:
        if self.path.exists():
            # Left behind by a run that was killed
            logger.warning(f"Removing stale scratch directory {self.path}")
            shutil.rmtree(self.path)
        self.path.mkdir(parents=True)
        return self.path

    def allocate(self, prefix: str) -> Path:
        directory = self.path / f"{prefix}-{next(self._counter)}"
        directory.mkdir()
        return directory

    def remove(self):
        if self.path.exists():
            shutil.rmtree(self.path)
            logger.debug(f"Removed scratch directory {self.path}")

    def __enter__(self):
        self.create()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.remove()
