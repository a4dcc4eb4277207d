import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3 import Retry

from releaseminer.cancellation import CancellationToken
from releaseminer.exceptions import (
    OperationCancelled,
    TransferFatal,
    TransferTransient,
)
from releaseminer.utils import get_max_parallel_downloads

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PERMIT_POLL_INTERVAL = 0.1
DEFAULT_TIMEOUT = (15.0, 300.0)
USER_AGENT = "releaseminer"

_session = None

# Shared by every transfer in the process, no matter which run started it
_permits = threading.BoundedSemaphore(get_max_parallel_downloads())


def get_session() -> requests.Session:
    """Shared session, created on first use.

    urllib3 retries failed connects and 429/5xx responses by itself. Reads are
    never retried here; a connection reset while streaming is reported as
    `TransferTransient` so the dispatcher can restart the whole transfer.
    """
    global _session

    if not _session:
        retry_strategy = Retry(
            total=3,
            connect=3,
            read=0,
            status=3,
            backoff_factor=2,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "HEAD"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)

        session = requests.Session()
        session.headers["User-Agent"] = USER_AGENT
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        _session = session

    return _session


def configure_transfer_permits(count: int):
    """Resize the permit pool. Only call this while no transfer is active."""
    global _permits

    if count < 1:
        raise ValueError("At least one parallel download is required")
    _permits = threading.BoundedSemaphore(count)


@contextmanager
def transfer_permit(cancellation_token: CancellationToken):
    permits = _permits
    while not permits.acquire(timeout=PERMIT_POLL_INTERVAL):
        cancellation_token.raise_if_cancelled()
    try:
        yield
    finally:
        permits.release()


def is_connection_reset(exception: BaseException) -> bool:
    """Whether `exception` wraps a connection reset by the peer.

    requests and urllib3 keep the original socket error in `args` as well as
    in the exception chain, so both are searched."""
    seen = set()
    stack = [exception]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))

        if isinstance(current, ConnectionResetError):
            return True

        stack.append(current.__cause__)
        stack.append(current.__context__)
        stack.extend(arg for arg in current.args if isinstance(arg, BaseException))
    return False


def fetch(
    url: str,
    destination: Path,
    cancellation_token: Optional[CancellationToken] = None,
    timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
) -> bool:
    """Download `url` to `destination`.

    Returns False without touching the network when `destination` already
    exists. The file is streamed to `<destination>.part` and renamed into place
    after the permit is released.
    """
    cancellation_token = cancellation_token or CancellationToken()
    destination = Path(destination)

    if destination.exists():
        logger.info(f"Skipping download because {destination} exists")
        return False

    destination.parent.mkdir(parents=True, exist_ok=True)
    part_path = destination.with_name(destination.name + ".part")

    start_time = time.time()
    try:
        _download(url, part_path, cancellation_token, timeout)
    except Exception:
        part_path.unlink(missing_ok=True)
        raise

    os.replace(part_path, destination)

    logger.info(f"Downloaded {url} in {time.time() - start_time:.1f} seconds")
    return True


def _download(
    url: str,
    part_path: Path,
    cancellation_token: CancellationToken,
    timeout: Tuple[float, float],
):
    try:
        with transfer_permit(cancellation_token):
            logger.info(f"Downloading {url}")

            with get_session().get(url, stream=True, timeout=timeout) as response:
                response.raise_for_status()
                with open(part_path, "wb") as fp:
                    for chunk in response.iter_content(CHUNK_SIZE):
                        cancellation_token.raise_if_cancelled()
                        if chunk:
                            fp.write(chunk)
    except OperationCancelled:
        raise
    except (requests.RequestException, OSError) as e:
        if is_connection_reset(e):
            raise TransferTransient(
                f"Connection reset while downloading {url}", url=url
            ) from e
        raise TransferFatal(f"Failed to download {url}: {e}", url=url) from e
