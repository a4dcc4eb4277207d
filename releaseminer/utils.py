import hashlib
import logging
import os
import re
import time
from datetime import datetime, timezone
from pathlib import PurePosixPath
from urllib.parse import urlparse, unquote

logger = logging.getLogger(__name__)


DEFAULT_MAX_PARALLEL_DOWNLOADS = 2


def sanitize_exception_message(exception_message):
    """
    Sanitizes an exception message by removing any sensitive information such as passwords.
    """
    # Regular expression to identify potential sensitive information like URLs with passwords
    sensitive_info_pattern = r":(\w+)@"

    # Replace sensitive information with a placeholder
    sanitized_message = re.sub(sensitive_info_pattern, ":******@", exception_message)

    return sanitized_message


def utcnow() -> datetime:
    return datetime.fromtimestamp(time.time(), timezone.utc)


def filename_from_url(url: str) -> str:
    name = PurePosixPath(unquote(urlparse(url).path)).name
    if not name:
        raise ValueError(f"Cannot determine a file name for '{url}'")
    return name


def cache_filename(url: str) -> str:
    """Stable local file name for `url`. Different urls sharing a file name
    don't collide."""
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:8]
    return f"{digest}-{filename_from_url(url)}"


def get_concurrency():
    concurrency = int(os.environ.get("RELEASEMINER_CONCURRENCY", "0"))
    if not concurrency:
        concurrency = min(32, (os.cpu_count() or 1) + 4)
    return concurrency


def get_max_parallel_downloads():
    return int(
        os.environ.get(
            "RELEASEMINER_MAX_PARALLEL_DOWNLOADS", DEFAULT_MAX_PARALLEL_DOWNLOADS
        )
    )


def format_duration(duration):
    return f"{duration.total_seconds():.2f}sec"
