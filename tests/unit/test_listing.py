"""
Unit tests for the NCES file lister
"""

import httpx
import pytest

from core.exceptions import PermanentDownloadError, TransientNetworkError
from ingestion.listing import NcesFileLister
from models.base import FileKind

PAGE = """
<html><body><table>
  <tr><td><a href="data/HD2023.zip">HD2023</a></td>
      <td><a href="data/HD2023_Data_Stata.zip">Stata</a></td>
      <td><a href="data/HD2023_Dict.zip">Dictionary</a></td></tr>
  <tr><td><a href="data/IC2023_SPS.zip">SPSS</a></td>
      <td><a href="data/SFA2223.zip">SFA2223</a></td></tr>
  <tr><td><a href="data/EF2022A.zip">Previous year</a></td>
      <td><a href="/ipeds/datacenter/DataFiles.aspx?year=2022">2022</a></td>
      <td><a href="data/HD2023.zip">Duplicate link</a></td></tr>
</table></body></html>
"""


def make_lister(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return NcesFileLister(client=client, page_url="https://nces.ed.gov/ipeds/datacenter/DataFiles.aspx")


class TestNcesFileLister:
    """Test link extraction and classification"""

    def test_parse_links(self):
        """Test parse links"""
        files = make_lister(lambda request: httpx.Response(200)).parse(PAGE, 2023)

        assert [(f.table_name, f.kind) for f in files] == [
            ("hd2023", FileKind.DATA),
            ("hd2023", FileKind.DICTIONARY),
            ("sfa2223", FileKind.DATA),
        ]
        assert files[0].url == "data/HD2023.zip"
        assert files[0].survey_component == "hd"
        assert files[2].survey_component == "sfa"
        assert all(f.year == 2023 for f in files)

    def test_fetch_passes_year(self):
        """Test fetch passes year"""
        seen = []

        def handler(request):
            seen.append(request.url.params["year"])
            return httpx.Response(200, text=PAGE)

        files = make_lister(handler)(2023)

        assert seen == ["2023"]
        assert len(files) == 3

    def test_server_error_raises(self):
        """Test server error raises"""
        with pytest.raises(TransientNetworkError):
            make_lister(lambda request: httpx.Response(502))(2023)

    def test_not_found_raises(self):
        """Test not found raises"""
        with pytest.raises(PermanentDownloadError):
            make_lister(lambda request: httpx.Response(404))(2023)
