"""
HTTP fetching of toolchain archives and installer assets.

Bodies are streamed into a private ``.part`` file next to the destination and
hashed on the fly; the destination only appears once the digest matches. Request
failures are retried with doubling delays, checksum failures are not.
"""

import hashlib
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

import requests
from requests.exceptions import RequestException

from releasekit.core.exceptions import ReleaseKitError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class DownloadError(ReleaseKitError):
    """A file could not be fetched."""


class ChecksumError(DownloadError):
    """Fetched content does not hash to the pinned SHA-256."""


def _sha256_of(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def verify_checksum(file_path: Path, expected_sha256: str) -> bool:
    """
    Compare a file's SHA-256 against a hex digest, ignoring case.

    Raises:
        FileNotFoundError: If file_path does not exist
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    return _sha256_of(file_path) == expected_sha256.lower()


def download_file(
    url: str,
    destination: Path,
    expected_sha256: Optional[str] = None,
    timeout: int = 30,
    max_retries: int = 3,
    sleep: Callable[[float], None] = time.sleep,
) -> Path:
    """
    Fetch url into destination.

    When a checksum is pinned and destination already holds matching content,
    no request is made.

    Args:
        url: Source URL
        destination: Target file; parent directories are created
        expected_sha256: Pinned hex digest, checked while streaming
        timeout: Per-request timeout in seconds
        max_retries: Attempts before giving up on request errors
        sleep: Called with the backoff delay between attempts

    Returns:
        destination

    Raises:
        ValueError: Empty url or destination
        ChecksumError: Downloaded content does not match expected_sha256
        DownloadError: Every attempt failed
    """
    if not url:
        raise ValueError("URL cannot be empty")
    if not destination:
        raise ValueError("Destination path cannot be empty")

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    if expected_sha256 and destination.exists():
        if _matches(destination, expected_sha256):
            logger.info(f"Reusing {destination}, checksum matches")
            return destination
        logger.warning(f"{destination} has the wrong checksum, fetching again")
        destination.unlink(missing_ok=True)

    delay = 1
    for attempt in range(1, max_retries + 1):
        try:
            _fetch(url, destination, expected_sha256, timeout)
            return destination
        except RequestException as e:
            if attempt == max_retries:
                raise DownloadError(
                    f"Download of {url} failed after {max_retries} attempts: {e}"
                ) from e
            logger.warning(
                f"Attempt {attempt}/{max_retries} for {url} failed ({e}), "
                f"next try in {delay}s"
            )
            sleep(delay)
            delay *= 2
        except OSError as e:
            # requests errors are OSErrors too, so this must follow the clause above
            raise DownloadError(f"Cannot save {url} to {destination}: {e}") from e

    raise DownloadError(f"Download of {url} failed: no attempts made")


def _matches(path: Path, expected_sha256: str) -> bool:
    try:
        return verify_checksum(path, expected_sha256)
    except FileNotFoundError:
        return False


def _fetch(url: str, destination: Path, expected_sha256: Optional[str], timeout):
    logger.info(f"Fetching {url}")
    # A private partial file per writer; concurrent fetches of one file only
    # race on the final rename, which is atomic
    fd, partial_name = tempfile.mkstemp(
        dir=destination.parent, prefix=f".{destination.name}.", suffix=".part"
    )
    partial = Path(partial_name)
    digest = hashlib.sha256()
    size = 0

    try:
        with os.fdopen(fd, "wb") as out:
            with requests.get(url, stream=True, timeout=timeout) as response:
                response.raise_for_status()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    out.write(chunk)
                    digest.update(chunk)
                    size += len(chunk)

        actual = digest.hexdigest()
        if expected_sha256 and actual != expected_sha256.lower():
            raise ChecksumError(
                f"Checksum mismatch for {destination.name}: "
                f"expected {expected_sha256}, got {actual}"
            )
        os.replace(partial, destination)
    finally:
        partial.unlink(missing_ok=True)

    logger.info(f"Saved {destination} ({size} bytes)")


__all__ = ["ChecksumError", "DownloadError", "download_file", "verify_checksum"]
