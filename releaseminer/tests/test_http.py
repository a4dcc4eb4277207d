import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
import requests
from urllib3.exceptions import ProtocolError

from releaseminer.cancellation import CancellationToken
from releaseminer.exceptions import (
    OperationCancelled,
    TransferFatal,
    TransferTransient,
)
from releaseminer.infra.fetch import configure_transfer_permits, fetch, http
from releaseminer.infra.fetch.http import is_connection_reset

URL = "https://download.example.com/Editor.exe"


def mock_session(chunks=(b"abc", b"def"), raise_for_status=None, get_error=None):
    session = MagicMock()
    if get_error is not None:
        session.get.side_effect = get_error
    else:
        response = session.get.return_value.__enter__.return_value
        response.iter_content.return_value = list(chunks)
        if raise_for_status is not None:
            response.raise_for_status.side_effect = raise_for_status
    return session


def connection_reset():
    return requests.ConnectionError(
        ProtocolError(
            "Connection aborted.",
            ConnectionResetError(104, "Connection reset by peer"),
        )
    )


def permits_available(count):
    acquired = 0
    while acquired <= count and http._permits.acquire(blocking=False):
        acquired += 1
    for _ in range(acquired):
        http._permits.release()
    return acquired == count


class TestFetch:
    def test_download(self, tmp_path):
        destination = tmp_path / "downloads" / "Editor.exe"
        session = mock_session()

        with patch("releaseminer.infra.fetch.http.get_session", return_value=session):
            assert fetch(URL, destination) is True

        assert destination.read_bytes() == b"abcdef"
        assert not destination.with_name("Editor.exe.part").exists()
        session.get.assert_called_once_with(
            URL, stream=True, timeout=http.DEFAULT_TIMEOUT
        )
        assert permits_available(2)

    def test_existing_file_is_not_downloaded(self, tmp_path):
        destination = tmp_path / "Editor.exe"
        destination.write_bytes(b"cached")
        session = mock_session()

        with patch("releaseminer.infra.fetch.http.get_session", return_value=session):
            assert fetch(URL, destination) is False

        session.get.assert_not_called()
        assert destination.read_bytes() == b"cached"

    def test_connection_reset_is_transient(self, tmp_path):
        session = mock_session(get_error=connection_reset())

        with patch("releaseminer.infra.fetch.http.get_session", return_value=session):
            with pytest.raises(TransferTransient) as exc_info:
                fetch(URL, tmp_path / "Editor.exe")

        assert exc_info.value.url == URL
        assert not (tmp_path / "Editor.exe").exists()
        assert permits_available(2)

    def test_http_error_is_fatal(self, tmp_path):
        session = mock_session(
            raise_for_status=requests.HTTPError("404 Client Error: Not Found")
        )

        with patch("releaseminer.infra.fetch.http.get_session", return_value=session):
            with pytest.raises(TransferFatal, match="404"):
                fetch(URL, tmp_path / "Editor.exe")

        assert not (tmp_path / "Editor.exe").exists()
        assert permits_available(2)

    def test_cancelled_while_waiting_for_permit(self, tmp_path):
        configure_transfer_permits(1)
        session = mock_session()
        cancellation_token = CancellationToken()
        cancellation_token.cancel()

        http._permits.acquire()
        try:
            with patch(
                "releaseminer.infra.fetch.http.get_session", return_value=session
            ):
                with pytest.raises(OperationCancelled):
                    fetch(URL, tmp_path / "Editor.exe", cancellation_token)
        finally:
            http._permits.release()

        session.get.assert_not_called()

    def test_cancelled_while_streaming(self, tmp_path):
        session = mock_session()
        cancellation_token = CancellationToken()
        cancellation_token.cancel()

        with patch("releaseminer.infra.fetch.http.get_session", return_value=session):
            with pytest.raises(OperationCancelled):
                fetch(URL, tmp_path / "Editor.exe", cancellation_token)

        assert not (tmp_path / "Editor.exe").exists()
        assert not (tmp_path / "Editor.exe.part").exists()
        assert permits_available(2)

    def test_downloads_never_exceed_permits(self, tmp_path):
        lock = threading.Lock()
        active = 0
        peak = 0

        def iter_content(chunk_size):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1
            return [b"abc"]

        session = mock_session()
        response = session.get.return_value.__enter__.return_value
        response.iter_content.side_effect = iter_content
        destinations = [tmp_path / f"Editor-{i}.exe" for i in range(6)]

        with patch("releaseminer.infra.fetch.http.get_session", return_value=session):
            with ThreadPoolExecutor(max_workers=6) as executor:
                results = list(
                    executor.map(lambda path: fetch(URL, path), destinations)
                )

        assert results == [True] * 6
        assert peak == 2
        assert all(path.read_bytes() == b"abc" for path in destinations)
        assert permits_available(2)

    def test_permit_released_before_rename(self, tmp_path):
        destination = tmp_path / "Editor.exe"
        real_replace = os.replace
        free_at_rename = []

        def replace(src, dst):
            free_at_rename.append(permits_available(2))
            real_replace(src, dst)

        with patch(
            "releaseminer.infra.fetch.http.get_session", return_value=mock_session()
        ), patch("releaseminer.infra.fetch.http.os.replace", side_effect=replace):
            assert fetch(URL, destination) is True

        assert free_at_rename == [True]
        assert destination.read_bytes() == b"abcdef"
        assert permits_available(2)


class TestIsConnectionReset:
    def test_nested_in_args(self):
        assert is_connection_reset(connection_reset())

    def test_in_cause(self):
        try:
            try:
                raise ConnectionResetError(104, "Connection reset by peer")
            except ConnectionResetError as e:
                raise requests.ConnectionError("Connection aborted.") from e
        except requests.ConnectionError as e:
            assert is_connection_reset(e)

    def test_other_errors(self):
        assert not is_connection_reset(requests.ConnectionError("Name not resolved"))
        assert not is_connection_reset(requests.HTTPError("500 Server Error"))
