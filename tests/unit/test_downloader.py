"""
Unit tests for the downloader: URL resolution, payload checks and retry
"""

import httpx
import pytest
from unittest.mock import Mock

from core.exceptions import PayloadValidationError
from ingestion.downloader import (
    ArtifactClass,
    Downloader,
    min_bytes_for,
    resolve_direct_url,
    validate_payload,
)
from schemas.results import DownloadStatus

PAYLOAD = b"UNITID,INSTNM\n" + b"100654,Alabama A & M University\n" * 100
HTML_PAGE = b"<!DOCTYPE html><html><body>Please sign in</body></html>" + b" " * 2000


def make_downloader(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    sleep = Mock()
    downloader = Downloader(client=client, retry_delay=1.0, sleep=sleep, **kwargs)
    return downloader, sleep


class TestResolveDirectUrl:
    """Test share-link resolution"""

    def test_relative_nces_data_path(self):
        """Test relative NCES data path"""
        assert resolve_direct_url("data/HD2023.zip") == "https://nces.ed.gov/ipeds/datacenter/data/HD2023.zip"

    def test_other_relative_path(self):
        """Test other relative path"""
        assert resolve_direct_url("/ipeds/use-the-data") == "https://nces.ed.gov/ipeds/use-the-data"

    def test_google_drive_share_link(self):
        """Test Google Drive share link"""
        url = "https://drive.google.com/file/d/1AbCdEf/view?usp=sharing"
        assert resolve_direct_url(url) == (
            "https://drive.usercontent.google.com/download"
            "?id=1AbCdEf&export=download&authuser=0&confirm=t"
        )

    def test_google_drive_open_link(self):
        """Test Google Drive open link"""
        url = "https://drive.google.com/open?id=XYZ"
        assert "id=XYZ" in resolve_direct_url(url)

    def test_dropbox_link(self):
        """Test Dropbox link"""
        url = "https://www.dropbox.com/s/abc/IPEDS.accdb?dl=0"
        assert resolve_direct_url(url) == "https://www.dropbox.com/s/abc/IPEDS.accdb?dl=1"

    def test_plain_url_unchanged(self):
        """Test plain URL unchanged"""
        url = "https://nces.ed.gov/ipeds/datacenter/data/HD2023.zip"
        assert resolve_direct_url(url) == url


class TestValidatePayload:
    """Test structural payload checks"""

    def test_html_rejected(self, tmp_path):
        """Test HTML rejected"""
        path = tmp_path / "hd2023.zip"
        path.write_bytes(HTML_PAGE)
        with pytest.raises(PayloadValidationError) as exc:
            validate_payload(path, 10)
        assert exc.value.context["check"] == "html_sniff"

    def test_html_after_whitespace_rejected(self, tmp_path):
        """Test HTML after whitespace rejected"""
        path = tmp_path / "hd2023.zip"
        path.write_bytes(b"\r\n  <HTML><head></head></HTML>")
        with pytest.raises(PayloadValidationError):
            validate_payload(path, 0)

    def test_size_floor(self, tmp_path):
        """Test size floor"""
        path = tmp_path / "hd2023.zip"
        path.write_bytes(b"PK\x03\x04 tiny")
        with pytest.raises(PayloadValidationError) as exc:
            validate_payload(path, 1000)
        assert exc.value.context["check"] == "size_floor"

    def test_valid_payload(self, tmp_path):
        """Test valid payload"""
        path = tmp_path / "hd2023.csv"
        path.write_bytes(PAYLOAD)
        validate_payload(path, min_bytes_for(ArtifactClass.SURVEY_FILE))

    def test_artifact_floors(self):
        """Test artifact floors"""
        assert min_bytes_for(ArtifactClass.SURVEY_FILE) == 1_000
        assert min_bytes_for(ArtifactClass.SNAPSHOT) == 50_000_000


class TestDownloader:
    """Test download retry behaviour"""

    def test_success_first_attempt(self, tmp_path):
        """Test success first attempt"""
        downloader, sleep = make_downloader(lambda request: httpx.Response(200, content=PAYLOAD))
        result = downloader.download("data/HD2023.zip", tmp_path / "hd2023.zip")

        assert result.status == DownloadStatus.DOWNLOADED
        assert result.attempts == 1
        assert result.bytes == len(PAYLOAD)
        assert (tmp_path / "hd2023.zip").read_bytes() == PAYLOAD
        sleep.assert_not_called()

    def test_bounded_retry_on_server_error(self, tmp_path):
        """Test bounded retry on server error"""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        downloader, sleep = make_downloader(handler)
        result = downloader.download("https://example.org/hd2023.zip", tmp_path / "hd2023.zip")

        assert result.status == DownloadStatus.FAILED
        assert result.attempts == 5
        assert len(calls) == 5
        # Exponential backoff between attempts, none after the last
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0, 4.0, 8.0]
        assert "503" in result.error

    def test_html_payload_retried_then_failed(self, tmp_path):
        """Test HTML payload retried then failed"""
        downloader, _ = make_downloader(lambda request: httpx.Response(200, content=HTML_PAGE))
        dest = tmp_path / "hd2023.zip"
        result = downloader.download("https://example.org/hd2023.zip", dest)

        assert result.status == DownloadStatus.FAILED
        assert result.attempts == 5
        assert "HTML" in result.error
        assert not dest.exists()

    def test_client_error_not_retried(self, tmp_path):
        """Test client error not retried"""
        downloader, sleep = make_downloader(lambda request: httpx.Response(404))
        result = downloader.download("https://example.org/missing.zip", tmp_path / "missing.zip")

        assert result.status == DownloadStatus.FAILED
        assert result.attempts == 1
        sleep.assert_not_called()

    def test_rate_limit_is_retried(self, tmp_path):
        """Test rate limit is retried"""
        responses = iter([httpx.Response(429), httpx.Response(200, content=PAYLOAD)])
        downloader, sleep = make_downloader(lambda request: next(responses))
        result = downloader.download("https://example.org/hd2023.zip", tmp_path / "hd2023.zip")

        assert result.status == DownloadStatus.DOWNLOADED
        assert result.attempts == 2
        assert sleep.call_count == 1

    def test_recovers_after_transient_failures(self, tmp_path):
        """Test recovers after transient failures"""
        state = {"calls": 0}

        def handler(request):
            state["calls"] += 1
            if state["calls"] < 3:
                raise httpx.ConnectTimeout("timed out", request=request)
            return httpx.Response(200, content=PAYLOAD)

        downloader, _ = make_downloader(handler)
        result = downloader.download("https://example.org/hd2023.zip", tmp_path / "hd2023.zip")

        assert result.ok
        assert result.attempts == 3

    def test_truncated_payload_below_floor(self, tmp_path):
        """Test truncated payload below floor"""
        downloader, _ = make_downloader(
            lambda request: httpx.Response(200, content=PAYLOAD), max_attempts=2
        )
        result = downloader.download(
            "https://example.org/IPEDS.accdb",
            tmp_path / "IPEDS.accdb",
            min_bytes=min_bytes_for(ArtifactClass.SNAPSHOT)
        )

        assert result.status == DownloadStatus.FAILED
        assert result.attempts == 2
        assert "smaller" in result.error

    def test_resolved_url_requested(self, tmp_path):
        """Test resolved URL requested"""
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, content=PAYLOAD)

        downloader, _ = make_downloader(handler)
        result = downloader.download("https://www.dropbox.com/s/abc/hd.zip?dl=0", tmp_path / "hd.zip")

        assert seen == ["https://www.dropbox.com/s/abc/hd.zip?dl=1"]
        assert result.resolved_url == seen[0]
