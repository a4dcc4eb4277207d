import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from releaseminer.cancellation import CancellationToken
from releaseminer.exceptions import OperationCancelled, SevenZipError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2


def get_executable() -> str:
    return os.environ.get("RELEASEMINER_7Z", "7z")


class SevenZip:
    """Thin wrapper around the 7z command line tool."""

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable or get_executable()

    def ensure_installed(self):
        try:
            result = subprocess.run(
                [self.executable, "--help"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            raise SevenZipError(f"Couldn't start {self.executable}") from e

        if result.returncode != 0:
            raise SevenZipError(f"{self.executable} is not installed")

    def extract(
        self,
        archive_path: Path,
        output_directory: Path,
        file_filter: Optional[Iterable[str]] = None,
        flat: bool = True,
        cancellation_token: Optional[CancellationToken] = None,
    ):
        """Extract `archive_path` into `output_directory`.

        With `flat`, directory structure is dropped (`7z e`), otherwise it
        is kept (`7z x`). `file_filter` holds 7z wildcards relative to the
        archive root.
        """
        args = [
            self.executable,
            "e" if flat else "x",
            "-y",
            str(archive_path),
            f"-o{output_directory}",
        ]
        if file_filter:
            args.extend(file_filter)

        logger.debug(f"Running {' '.join(args)}")

        # stderr goes to a file; a pipe could fill up while we poll
        with tempfile.TemporaryFile() as stderr:
            try:
                process = subprocess.Popen(
                    args, stdout=subprocess.DEVNULL, stderr=stderr
                )
            except OSError as e:
                raise SevenZipError(f"Couldn't start {self.executable}") from e

            while True:
                try:
                    returncode = process.wait(timeout=POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    if cancellation_token and cancellation_token.is_cancelled():
                        process.kill()
                        process.wait()
                        raise OperationCancelled(
                            f"Extraction of {archive_path} was cancelled"
                        )

            if returncode != 0:
                stderr.seek(0)
                message = stderr.read().decode("utf-8", errors="replace").strip()
                raise SevenZipError(f"7z returned {returncode}\n{message}")
