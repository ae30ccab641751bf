"""
NCES data center file lister.

Implements the file-lister interface the update runner consumes: a callable
taking a year and returning the SourceFile descriptors published for it.
"""

from pathlib import PurePosixPath
from typing import List, Optional, Protocol
from urllib.parse import urlparse
import logging
import re

import httpx
from bs4 import BeautifulSoup

from core.config import settings
from core.exceptions import PermanentDownloadError, TransientNetworkError
from ingestion.naming import canonical_table_name, table_prefix, year_suffix
from models.base import FileKind
from schemas.source import SourceFile

logger = logging.getLogger(__name__)

DICTIONARY_RE = re.compile(r"_?dict\.zip$", re.IGNORECASE)
STATS_PACKAGE_RE = re.compile(r"_(data_)?(stata|sps|sas)\.zip$", re.IGNORECASE)


class FileLister(Protocol):
    def __call__(self, year: int) -> List[SourceFile]:
        ...


def _file_name(href: str) -> str:
    return PurePosixPath(urlparse(href).path).name


class NcesFileLister:
    """
    List the data and dictionary archives on the NCES DataFiles page.

    Args:
        client: httpx.Client to use (one is created and owned if omitted)
        page_url: DataFiles page; the year is passed as a query parameter
    """

    def __init__(self, client: Optional[httpx.Client] = None, page_url: Optional[str] = None):
        self.page_url = page_url or settings.NCES_DATA_FILES_URL
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=settings.DOWNLOAD_TIMEOUT, follow_redirects=True)

    def close(self):
        if self._owns_client:
            self.client.close()

    def fetch_page(self, year: int) -> str:
        try:
            response = self.client.get(self.page_url, params={"year": year})
        except httpx.HTTPError as e:
            raise TransientNetworkError(
                f"Could not fetch file list for {year}",
                context={"url": self.page_url, "year": year},
                original_exception=e
            )
        if response.status_code >= 400:
            error_class = TransientNetworkError if response.status_code >= 500 else PermanentDownloadError
            raise error_class(
                f"HTTP {response.status_code} fetching file list for {year}",
                context={"url": self.page_url, "year": year, "status_code": response.status_code}
            )
        return response.text

    def parse(self, html: str, year: int) -> List[SourceFile]:
        """Extract the year's .zip links, dropping statistical-package variants."""
        soup = BeautifulSoup(html, "html.parser")
        token = year_suffix(year)
        seen = set()
        files = []

        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            name = _file_name(href)
            if not name.lower().endswith(".zip") or token not in name:
                continue
            if STATS_PACKAGE_RE.search(name) or href in seen:
                continue
            seen.add(href)

            kind = FileKind.DICTIONARY if DICTIONARY_RE.search(name) else FileKind.DATA
            table_name = canonical_table_name(name)
            files.append(SourceFile(
                year=year,
                survey_component=table_prefix(table_name) or table_name,
                kind=kind,
                url=href,
                table_name=table_name
            ))
        return files

    def __call__(self, year: int) -> List[SourceFile]:
        files = self.parse(self.fetch_page(year), year)
        data_count = sum(1 for f in files if f.kind == FileKind.DATA)
        logger.info(f"Found {data_count} data and {len(files) - data_count} dictionary files for {year}")
        return files
