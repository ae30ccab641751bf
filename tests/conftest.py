"""
Pytest configuration and fixtures
"""

import io
import zipfile
from typing import Dict, List

import pandas as pd
import pytest

from core.database import StoreSession


@pytest.fixture
def store(tmp_path):
    """File-backed SQLite store, one per test"""
    with StoreSession(f"sqlite:///{tmp_path / 'test.db'}") as session:
        session.ensure_bookkeeping()
        yield session


def csv_bytes(header: List[str], rows: List[List], encoding: str = "utf-8") -> bytes:
    lines = [",".join(header)] + [",".join(str(v) for v in row) for row in rows]
    return ("\n".join(lines) + "\n").encode(encoding)


def zip_bytes(members: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in members.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def workbook_bytes(sheets: Dict[str, pd.DataFrame]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, frame in sheets.items():
            frame.to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()


def institutions(count: int, start: int = 100000) -> List[List]:
    """Rows of a small HD-like survey table"""
    return [
        [start + i, f"Institution {i}", "MA" if i % 2 else "NY", i % 4 + 1]
        for i in range(count)
    ]


INSTITUTION_HEADER = ["UNITID", "INSTNM", "STABBR", "SECTOR"]


@pytest.fixture
def hd_csv():
    """100 distinct institutions as CSV bytes"""
    return csv_bytes(INSTITUTION_HEADER, institutions(100))


@pytest.fixture
def dictionary_zip():
    """Dictionary archive with Varlist and Description sheets"""
    variables = pd.DataFrame({
        "varNumber": [1, 2],
        "varName": ["UNITID", "SECTOR"],
        "varTitle": ["Unique identification number", "Sector of institution"],
    })
    labels = pd.DataFrame({
        "varName": ["SECTOR", "SECTOR"],
        "Codevalue": ["1", "2"],
        "valueLabel": ["Public, 4-year or above", "Private not-for-profit, 4-year or above"],
    })
    return zip_bytes({"hd2023.xlsx": workbook_bytes({"Varlist": variables, "Description": labels})})

