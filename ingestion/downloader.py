"""
Remote file downloader with bounded retry and payload validation.

Features:
- Share-link resolution (relative NCES paths, Google Drive, Dropbox)
- Exponential backoff retry logic for transient failures
- HTML sniffing so a landing page is never mistaken for a data file
- Minimum size floors per artifact class
"""

from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse
import logging
import re
import time

import httpx

from core.config import settings
from core.exceptions import (
    DownloadError,
    PayloadValidationError,
    PermanentDownloadError,
    TransientNetworkError,
)
from schemas.results import DownloadResult, DownloadStatus

logger = logging.getLogger(__name__)

SNIFF_BYTES = 512
HTML_MARKERS = (b"<!doctype", b"<html", b"<head", b"<body")
RETRYABLE_CLIENT_STATUSES = (408, 429)

NCES_ROOT = "https://nces.ed.gov/"
GOOGLE_DRIVE_DOWNLOAD = "https://drive.usercontent.google.com/download"
GOOGLE_DRIVE_ID_RE = re.compile(r"/file/d/([^/?#]+)")


class ArtifactClass(str, Enum):
    SURVEY_FILE = "survey_file"
    SNAPSHOT = "snapshot"


def min_bytes_for(artifact: ArtifactClass) -> int:
    if artifact == ArtifactClass.SNAPSHOT:
        return settings.MIN_BYTES_SNAPSHOT
    return settings.MIN_BYTES_SURVEY_FILE


# ============================================================================
# URL resolvers
# ============================================================================

def _resolve_relative(url: str) -> Optional[str]:
    """Relative links on the NCES data center pages."""
    if urlparse(url).scheme:
        return None
    path = url.lstrip("./").lstrip("/")
    if path.startswith("data/"):
        return settings.NCES_DATA_BASE_URL + path[len("data/"):]
    return NCES_ROOT + path


def _resolve_google_drive(url: str) -> Optional[str]:
    parsed = urlparse(url)
    if parsed.netloc not in ("drive.google.com", "docs.google.com"):
        return None
    match = GOOGLE_DRIVE_ID_RE.search(parsed.path)
    file_id = match.group(1) if match else parse_qs(parsed.query).get("id", [None])[0]
    if not file_id:
        return None
    query = urlencode({"id": file_id, "export": "download", "authuser": "0", "confirm": "t"})
    return f"{GOOGLE_DRIVE_DOWNLOAD}?{query}"


def _resolve_dropbox(url: str) -> Optional[str]:
    parsed = urlparse(url)
    if not parsed.netloc.endswith("dropbox.com"):
        return None
    query = parse_qs(parsed.query, keep_blank_values=True)
    query["dl"] = ["1"]
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))


# Tried in order; the first resolver returning a URL wins.
# Support for another file host is one more function appended here.
URL_RESOLVERS: List[Callable[[str], Optional[str]]] = [
    _resolve_relative,
    _resolve_google_drive,
    _resolve_dropbox,
]


def resolve_direct_url(url: str) -> str:
    """Direct-download form of a share link; other URLs pass through unchanged."""
    url = url.strip()
    for resolver in URL_RESOLVERS:
        resolved = resolver(url)
        if resolved:
            return resolved
    return url


# ============================================================================
# Payload validation
# ============================================================================

def looks_like_html(head: bytes) -> bool:
    return head.lstrip().lower().startswith(HTML_MARKERS)


def validate_payload(path: Union[str, Path], min_bytes: int):
    """
    Structural sanity checks on a downloaded file.

    Raises:
        PayloadValidationError: HTML served instead of data, or payload
            below the size floor
    """
    path = Path(path)
    size = path.stat().st_size

    with open(path, "rb") as f:
        head = f.read(SNIFF_BYTES)

    if looks_like_html(head):
        raise PayloadValidationError(
            "Downloaded payload is an HTML page",
            context={"check": "html_sniff", "file_path": str(path), "size": size}
        )

    if size < min_bytes:
        raise PayloadValidationError(
            "Downloaded payload is smaller than expected",
            context={"check": "size_floor", "file_path": str(path), "size": size, "min_bytes": min_bytes}
        )


# ============================================================================
# Downloader
# ============================================================================

class Downloader:
    """
    Fetch remote files to local disk.

    Args:
        client: httpx.Client to use (one is created and owned if omitted)
        max_attempts: Maximum number of attempts per file (default: 5)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        timeout: Request timeout in seconds
        sleep: Sleep function used for backoff (swappable in tests)
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.max_attempts = max_attempts or settings.DOWNLOAD_MAX_ATTEMPTS
        self.retry_delay = settings.DOWNLOAD_RETRY_DELAY if retry_delay is None else retry_delay
        self.timeout = timeout or settings.DOWNLOAD_TIMEOUT
        self._sleep = sleep
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=self.timeout, follow_redirects=True)

    def close(self):
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "Downloader":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _fetch_once(self, url: str, dest: Path):
        """Stream one attempt to disk, overwriting any previous copy."""
        try:
            with self.client.stream("GET", url) as response:
                status = response.status_code
                if 400 <= status < 500 and status not in RETRYABLE_CLIENT_STATUSES:
                    raise PermanentDownloadError(
                        f"HTTP {status} for {url}",
                        context={"url": url, "status_code": status}
                    )
                if status >= 400:
                    raise TransientNetworkError(
                        f"HTTP {status} for {url}",
                        context={"url": url, "status_code": status}
                    )
                with open(dest, "wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"Request timeout for {url}",
                context={"url": url, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.TransportError as e:
            raise TransientNetworkError(
                f"Network error for {url}",
                context={"url": url},
                original_exception=e
            )

    def download(
        self,
        url: str,
        dest: Union[str, Path],
        min_bytes: Optional[int] = None
    ) -> DownloadResult:
        """
        Download a file with retry and validation.

        Never raises for per-file failures; the outcome is in the result.

        Args:
            url: Source URL (share links are resolved first)
            dest: Local target path
            min_bytes: Size floor (defaults to the survey-file floor)
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        resolved = resolve_direct_url(url)
        floor = min_bytes_for(ArtifactClass.SURVEY_FILE) if min_bytes is None else min_bytes

        last_error: Optional[DownloadError] = None
        attempts = 0

        for attempt in range(self.max_attempts):
            attempts = attempt + 1
            logger.debug(f"Download attempt {attempts}/{self.max_attempts} for {resolved}")
            try:
                self._fetch_once(resolved, dest)
                validate_payload(dest, floor)
                size = dest.stat().st_size
                logger.info(f"Downloaded {dest.name} ({size} bytes)")
                return DownloadResult(
                    url=url,
                    resolved_url=resolved,
                    path=str(dest),
                    status=DownloadStatus.DOWNLOADED,
                    attempts=attempts,
                    bytes=size
                )
            except PermanentDownloadError as e:
                logger.error(f"Permanent download failure: {e}")
                last_error = e
                dest.unlink(missing_ok=True)
                break
            except (TransientNetworkError, PayloadValidationError) as e:
                last_error = e
                dest.unlink(missing_ok=True)
                if attempt < self.max_attempts - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"{e.message}. Retrying in {delay} seconds "
                        f"(attempt {attempts}/{self.max_attempts})"
                    )
                    self._sleep(delay)
            except OSError as e:
                last_error = DownloadError(
                    f"Could not write {dest}",
                    context={"url": resolved, "dest": str(dest)},
                    original_exception=e
                )
                dest.unlink(missing_ok=True)
                break

        logger.error(f"Giving up on {resolved} after {attempts} attempt(s)")
        return DownloadResult(
            url=url,
            resolved_url=resolved,
            path=str(dest),
            status=DownloadStatus.FAILED,
            attempts=attempts,
            error=str(last_error) if last_error else "unknown download failure"
        )
