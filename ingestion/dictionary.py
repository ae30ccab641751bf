"""
Import IPEDS data dictionary workbooks.

Each published dictionary archive holds one Excel workbook whose sheets map
to dictionary roles by name:

    Varlist                    -> vartable<yy>   (variable names and titles)
    Description / Frequencies  -> valuesets<yy>  (code-to-label mappings)

Workbooks of one year are accumulated and merged by flush_year, keyed by
their source_file column. flush_year also (re)builds that year's tables<yy>
catalog of data tables.
"""

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Set, Union
import io
import logging
import zipfile

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import column, select, table, text

from core.database import StoreSession
from core.exceptions import ImportFailure, StoreWriteError
from ingestion.importer import ImportLogWriter, dedupe_headers, pick_member
from ingestion.naming import (
    TABLES_CATALOG,
    VALUE_DICTIONARY,
    VARIABLE_DICTIONARY,
    canonical_column_name,
    derive_year,
    is_metadata_table,
)
from ingestion.transformers.coercion import clean_header, sanitize_text
from models.base import FileKind, ImportStatus
from schemas.results import ImportResult
from schemas.source import ImportedTable, SourceFile

logger = logging.getLogger(__name__)

# Role -> sheet names in order of preference (matched case-insensitively)
SHEET_ROLES = {
    "variables": ("varlist",),
    "value_labels": ("description", "frequencies"),
}
WORKBOOK_SUFFIXES = (".xlsx",)
BOOKKEEPING_PREFIX = "ipeds_"
SOURCE_COLUMN = "source_file"


@dataclass
class DictionaryPayload:
    """Frames read from one workbook; a role is None when its sheet is absent."""

    variables: Optional[pd.DataFrame] = None
    value_labels: Optional[pd.DataFrame] = None

    @property
    def is_empty(self) -> bool:
        return self.variables is None and self.value_labels is None

    def roles(self) -> List[str]:
        return [role for role in SHEET_ROLES if getattr(self, role) is not None]


def _open_workbook(path: Path) -> pd.ExcelFile:
    if zipfile.is_zipfile(path) and path.suffix.lower() != ".xlsx":
        with zipfile.ZipFile(path) as archive:
            member = pick_member(archive.namelist(), WORKBOOK_SUFFIXES)
            if member is None:
                raise ImportFailure(
                    "Archive contains no Excel workbook",
                    context={"file_path": str(path), "stage": "unpack", "members": archive.namelist()}
                )
            return pd.ExcelFile(io.BytesIO(archive.read(member)), engine="openpyxl")
    return pd.ExcelFile(path, engine="openpyxl")


def _clean_sheet(frame: pd.DataFrame) -> pd.DataFrame:
    frame = frame.dropna(how="all")
    names = [
        canonical_column_name(clean_header(c)) if clean_header(c) else f"column_{i + 1}"
        for i, c in enumerate(frame.columns)
    ]
    frame = dedupe_headers(frame, names)
    return sanitize_text(frame).reset_index(drop=True)


def read_workbook(path: Union[str, Path]) -> DictionaryPayload:
    """
    Read the dictionary roles of a workbook (or a zip holding one).

    Sheets that are absent leave their role as None; that is not an error.

    Raises:
        ImportFailure: The file is not a readable workbook
    """
    path = Path(path)
    payload = DictionaryPayload()
    try:
        with _open_workbook(path) as workbook:
            sheets = {str(name).strip().lower(): name for name in workbook.sheet_names}
            for role, candidates in SHEET_ROLES.items():
                for candidate in candidates:
                    if candidate in sheets:
                        frame = workbook.parse(sheets[candidate], dtype=str)
                        setattr(payload, role, _clean_sheet(frame))
                        break
    except (OSError, ValueError, KeyError, zipfile.BadZipFile, InvalidFileException) as e:
        raise ImportFailure(
            f"Cannot read workbook {path.name}",
            context={"file_path": str(path), "stage": "parse"},
            original_exception=e
        )
    return payload


class DictionaryImporter:
    """
    Accumulate dictionary workbooks per year and write the year's
    dictionary and catalog tables.
    """

    def __init__(self, store: StoreSession):
        self.store = store
        self.log = ImportLogWriter(store)
        self._pending: Dict[int, Dict[str, List[pd.DataFrame]]] = {}
        self._staged_sources: Dict[int, Set[str]] = {}

    def pending_years(self) -> List[int]:
        return sorted(self._pending)

    def import_file(self, path: Union[str, Path], source_file: SourceFile) -> ImportResult:
        """Read one workbook and stage its frames for source_file.year."""
        try:
            payload = read_workbook(path)
        except ImportFailure as e:
            logger.error(
                f"Dictionary {source_file.table_name} failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            result = ImportResult(
                table_name=source_file.table_name,
                status=ImportStatus.FAILED,
                stage=e.context.get("stage", "parse"),
                error=str(e)
            )
            self.log.record(result, FileKind.DICTIONARY, source_file.url)
            return result

        if payload.is_empty:
            logger.warning(f"Dictionary {source_file.table_name} has no Varlist/Description/Frequencies sheet")
            return ImportResult(
                table_name=source_file.table_name,
                status=ImportStatus.SKIPPED,
                stage="parse",
                error="no dictionary sheets found"
            )

        staged = self._pending.setdefault(source_file.year, {role: [] for role in SHEET_ROLES})
        for role in payload.roles():
            frame = getattr(payload, role).copy()
            frame[SOURCE_COLUMN] = source_file.table_name
            staged[role].append(frame)
        self._staged_sources.setdefault(source_file.year, set()).add(source_file.table_name)

        logger.info(f"Staged dictionary {source_file.table_name} ({', '.join(payload.roles())})")
        return ImportResult(table_name=source_file.table_name, status=ImportStatus.SUCCESS)

    def flush_year(self, year: int, catalog: bool = True) -> List[ImportResult]:
        """
        Merge the staged dictionary frames of a year into its tables plus catalog.

        Rows are keyed by source_file: rows of a re-staged workbook are
        replaced, rows of every other workbook already in the table are kept.
        Only roles that produced rows are written, so a year whose workbooks
        lack a Varlist sheet gets no vartable<yy>.
        """
        staged = self._pending.pop(year, {})
        sources = self._staged_sources.pop(year, set())
        targets = (
            ("variables", VARIABLE_DICTIONARY.table_for_year(year)),
            ("value_labels", VALUE_DICTIONARY.table_for_year(year)),
        )

        results = []
        for role, table_name in targets:
            frames = [f for f in staged.get(role, []) if not f.empty]
            existing = self._existing_rows(table_name) if sources else None
            if existing is not None:
                kept = existing[~existing[SOURCE_COLUMN].isin(sources)]
                if frames or len(kept) < len(existing):
                    frames = ([kept] if len(kept) or not frames else []) + frames
            if frames:
                results.append(self._write(table_name, pd.concat(frames, ignore_index=True, sort=False)))

        if catalog:
            frame = self.build_catalog(year)
            if frame is not None:
                results.append(self._write(TABLES_CATALOG.table_for_year(year), frame))
        return results

    def imported_sources(self, year: int) -> Set[str]:
        """source_file values already present in a year's dictionary tables."""
        found = set()
        for dictionary in (VARIABLE_DICTIONARY, VALUE_DICTIONARY):
            table_name = dictionary.table_for_year(year)
            if not self.store.has_table(table_name):
                continue
            if SOURCE_COLUMN not in [name for name, _ in self.store.list_columns(table_name)]:
                continue
            query = select(column(SOURCE_COLUMN)).distinct().select_from(table(table_name))
            found.update(row[0] for row in self.store.execute(query) if row[0] is not None)
        return found

    def _existing_rows(self, table_name: str) -> Optional[pd.DataFrame]:
        if not self.store.has_table(table_name):
            return None
        frame = self.store.read_frame(select(text("*")).select_from(table(table_name)))
        if SOURCE_COLUMN not in frame.columns:
            frame[SOURCE_COLUMN] = None
        return frame

    def data_tables_for_year(self, year: int) -> List[str]:
        return [
            name for name in self.store.list_tables()
            if derive_year(name) == year
            and not is_metadata_table(name)
            and not name.startswith(BOOKKEEPING_PREFIX)
        ]

    def build_catalog(self, year: int) -> Optional[pd.DataFrame]:
        """Catalog rows describing the data tables present for a year."""
        tables = self.data_tables_for_year(year)
        if not tables:
            logger.info(f"No data tables found for {year} to catalog")
            return None
        order = list(range(1, len(tables) + 1))
        return pd.DataFrame({
            "SurveyOrder": order,
            "SurveyNumber": 1,
            "Survey": "IPEDS Survey",
            "YearCoverage": f"Academic year {year}-{(year + 1) % 100:02d}",
            "TableName": tables,
            "Tablenumber": order,
            "TableTitle": [f"Data table {t}" for t in tables],
            "Release": "Provisional",
            "Release date": f"Generated {date.today().isoformat()}",
            "Description": [f"Data table {t} for year {year}" for t in tables],
        })

    def _write(self, table_name: str, frame: pd.DataFrame) -> ImportResult:
        try:
            self.store.replace_table(table_name, frame)
        except StoreWriteError as e:
            logger.error(
                f"Writing {table_name} failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            result = ImportResult(
                table_name=table_name,
                status=ImportStatus.FAILED,
                stage="persist",
                error=str(e)
            )
        else:
            imported = ImportedTable.from_columns(
                table_name, self.store.list_columns(table_name), len(frame)
            )
            result = ImportResult(
                table_name=table_name,
                status=ImportStatus.SUCCESS,
                imported_table=imported,
                schema_changes=self.log.schema_changes(table_name, imported.column_names)
            )
            logger.info(f"Wrote {table_name} with {len(frame)} rows")
        self.log.record(result, FileKind.DICTIONARY)
        return result
