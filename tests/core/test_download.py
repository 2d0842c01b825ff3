"""
Unit tests for download module.

Tests download functionality with mocked network requests.
"""

import hashlib
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock, patch

import pytest
import requests
import responses

from releasekit.core.download import (
    ChecksumError,
    DownloadError,
    download_file,
    verify_checksum,
)

URL = "https://example.com/toolchains/rust-1.9.0-x86_64-pc-windows-msvc.tar.gz"
PAYLOAD = b"toolchain archive contents" * 100
PAYLOAD_SHA256 = hashlib.sha256(PAYLOAD).hexdigest()


class TestDownloadFile:
    """Test download_file function."""

    @responses.activate
    def test_download_success(self, tmp_path):
        """Test a plain download writes the file."""
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        destination = tmp_path / "archive.tar.gz"

        result = download_file(URL, destination)

        assert result == destination
        assert destination.read_bytes() == PAYLOAD
        assert not (tmp_path / "archive.tar.gz.part").exists()

    @responses.activate
    def test_download_with_checksum(self, tmp_path):
        """Test a download with a matching checksum."""
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        destination = tmp_path / "archive.tar.gz"

        download_file(URL, destination, expected_sha256=PAYLOAD_SHA256.upper())

        assert destination.read_bytes() == PAYLOAD

    @responses.activate
    def test_checksum_mismatch(self, tmp_path):
        """Test a checksum mismatch raises and leaves nothing behind."""
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        destination = tmp_path / "archive.tar.gz"

        with pytest.raises(ChecksumError, match="Checksum mismatch"):
            download_file(URL, destination, expected_sha256="0" * 64)

        assert not destination.exists()
        assert not (tmp_path / "archive.tar.gz.part").exists()

    @responses.activate
    def test_existing_file_with_matching_checksum_is_reused(self, tmp_path):
        """Test no request is made when the file is already present."""
        destination = tmp_path / "archive.tar.gz"
        destination.write_bytes(PAYLOAD)

        download_file(URL, destination, expected_sha256=PAYLOAD_SHA256)

        assert len(responses.calls) == 0

    @responses.activate
    def test_existing_file_with_wrong_checksum_is_replaced(self, tmp_path):
        """Test a corrupt existing file is downloaded again."""
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        destination = tmp_path / "archive.tar.gz"
        destination.write_bytes(b"corrupt")

        download_file(URL, destination, expected_sha256=PAYLOAD_SHA256)

        assert destination.read_bytes() == PAYLOAD
        assert len(responses.calls) == 1

    @responses.activate
    def test_retries_then_succeeds(self, tmp_path):
        """Test transient failures are retried with exponential backoff."""
        responses.add(responses.GET, URL, status=503)
        responses.add(responses.GET, URL, status=503)
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        sleep = Mock()

        download_file(URL, tmp_path / "a.tar.gz", max_retries=3, sleep=sleep)

        assert len(responses.calls) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    @responses.activate
    def test_gives_up_after_max_retries(self, tmp_path):
        """Test DownloadError after the last attempt."""
        responses.add(responses.GET, URL, status=500)
        sleep = Mock()

        with pytest.raises(DownloadError, match="after 2 attempts"):
            download_file(URL, tmp_path / "a.tar.gz", max_retries=2, sleep=sleep)

        assert len(responses.calls) == 2
        assert sleep.call_count == 1

    @responses.activate
    def test_connection_error(self, tmp_path):
        """Test connection errors become DownloadError."""
        responses.add(
            responses.GET, URL, body=requests.exceptions.ConnectionError("refused")
        )

        with pytest.raises(DownloadError):
            download_file(URL, tmp_path / "a.tar.gz", max_retries=1)

    def test_empty_url(self, tmp_path):
        """Test empty URL is rejected."""
        with pytest.raises(ValueError, match="URL cannot be empty"):
            download_file("", tmp_path / "a")

    @responses.activate
    def test_creates_parent_directories(self, tmp_path):
        """Test missing parent directories are created."""
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        destination = tmp_path / "nested" / "dir" / "a.tar.gz"

        download_file(URL, destination)

        assert destination.exists()

    @responses.activate
    def test_concurrent_downloads_of_one_file(self, tmp_path):
        """Test two writers of the same destination do not break each other."""

        def slow_payload(request):
            time.sleep(0.1)
            return 200, {}, PAYLOAD

        responses.add_callback(responses.GET, URL, callback=slow_payload)
        destination = tmp_path / "archive.tar.gz"

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(download_file, URL, destination, PAYLOAD_SHA256)
                for _ in range(2)
            ]
            results = [f.result() for f in futures]

        assert results == [destination, destination]
        assert destination.read_bytes() == PAYLOAD
        assert [p.name for p in tmp_path.iterdir()] == ["archive.tar.gz"]

    @responses.activate
    def test_write_failure_is_download_error(self, tmp_path):
        """Test filesystem errors while saving become DownloadError."""
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        sleep = Mock()

        with patch("os.replace", side_effect=PermissionError("denied")):
            with pytest.raises(DownloadError, match="Cannot save"):
                download_file(URL, tmp_path / "a.tar.gz", sleep=sleep)

        sleep.assert_not_called()
        assert list(tmp_path.iterdir()) == []


class TestVerifyChecksum:
    """Test verify_checksum function."""

    def test_matching(self, tmp_path):
        """Test matching checksum."""
        path = tmp_path / "file"
        path.write_bytes(PAYLOAD)
        assert verify_checksum(path, PAYLOAD_SHA256) is True

    def test_not_matching(self, tmp_path):
        """Test non-matching checksum."""
        path = tmp_path / "file"
        path.write_bytes(PAYLOAD)
        assert verify_checksum(path, "a" * 64) is False

    def test_missing_file(self, tmp_path):
        """Test missing file raises."""
        with pytest.raises(FileNotFoundError):
            verify_checksum(tmp_path / "missing", PAYLOAD_SHA256)
