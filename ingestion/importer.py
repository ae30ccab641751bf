"""
Import one downloaded survey data file into a per-year table.

Pipeline per file: unpack -> parse (encoding fallback, header and row
de-duplication) -> sanitize and coerce types -> inject YEAR -> persist.
Every failure is caught at this boundary and returned as an ImportResult
naming the stage it happened in; only a lost store connection propagates.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
import io
import json
import logging
import re
import zipfile

import pandas as pd
from sqlalchemy import desc, insert, select

from core.config import settings
from core.database import StoreSession
from core.exceptions import ImportFailure, ParseError, StoreConnectionError, StoreWriteError
from ingestion.naming import canonical_column_name, canonical_table_name, derive_year
from ingestion.transformers.coercion import FrameCoercer, clean_header, inject_year, sanitize_text
from models.base import FileKind, ImportStatus
from models.import_log import ImportLog
from schemas.results import ImportResult
from schemas.source import ImportedTable

logger = logging.getLogger(__name__)

NA_TOKENS = ["", "NA", "NULL", ".", "-", "n/a"]
REVISED_MARKER = "_rv"
ENCODING_ERROR_MARKERS = ("encod", "unicode", "utf-8", "utf8", "invalid byte")


# ============================================================================
# Unpack
# ============================================================================

def pick_member(names: List[str], suffixes: Tuple[str, ...]) -> Optional[str]:
    """
    Choose the payload inside an archive by extension.

    With several candidates the revised ("_rv") file wins, else the first
    in archive order.
    """
    candidates = [
        n for n in names
        if n.lower().endswith(suffixes) and not n.startswith("__MACOSX")
    ]
    if not candidates:
        return None
    for name in candidates:
        if Path(name).stem.lower().endswith(REVISED_MARKER):
            return name
    return candidates[0]


def load_payload(path: Union[str, Path]) -> Tuple[bytes, str]:
    """
    Raw bytes of the delimited payload of a .zip or flat .csv file.

    Raises:
        ImportFailure: Archive unreadable or without a CSV member
    """
    path = Path(path)
    try:
        if zipfile.is_zipfile(path):
            with zipfile.ZipFile(path) as archive:
                member = pick_member(archive.namelist(), (".csv",))
                if member is None:
                    raise ImportFailure(
                        "Archive contains no CSV file",
                        context={"file_path": str(path), "stage": "unpack", "members": archive.namelist()}
                    )
                return archive.read(member), member
        return path.read_bytes(), path.name
    except (OSError, zipfile.BadZipFile) as e:
        raise ImportFailure(
            f"Cannot read {path.name}",
            context={"file_path": str(path), "stage": "unpack"},
            original_exception=e
        )


# ============================================================================
# Parse
# ============================================================================

def strip_to_ascii(raw: bytes) -> str:
    """Last-resort decode: keep printable ASCII plus tab and newlines."""
    return re.sub(rb"[^\x09\x0a\x0d\x20-\x7e]", b"", raw).decode("ascii")


def dedupe_headers(frame: pd.DataFrame, names: List[str]) -> pd.DataFrame:
    """
    Apply header names, collapsing duplicates.

    A duplicate whose values equal an earlier column of the same name is
    dropped; otherwise it is kept with a _2, _3, ... suffix.
    """
    seen: Dict[str, List[int]] = {}
    keep: List[int] = []
    final: List[str] = []

    for position, name in enumerate(names):
        if name in seen:
            column = frame.iloc[:, position]
            if any(frame.iloc[:, p].equals(column) for p in seen[name]):
                logger.debug(f"Dropping duplicate column {name}")
                continue
            seen[name].append(position)
            final.append(f"{name}_{len(seen[name])}")
        else:
            seen[name] = [position]
            final.append(name)
        keep.append(position)

    frame = frame.iloc[:, keep].copy()
    frame.columns = final
    return frame


def _parse_text(text: str) -> pd.DataFrame:
    frame = pd.read_csv(
        io.StringIO(text),
        header=None,
        dtype=str,
        keep_default_na=False,
        na_values=NA_TOKENS,
        skip_blank_lines=True
    )
    if frame.empty:
        raise pd.errors.EmptyDataError("No header row")

    header = [clean_header(h) if isinstance(h, str) else "" for h in frame.iloc[0].tolist()]
    frame = frame.iloc[1:].reset_index(drop=True)
    names = [canonical_column_name(h) if h else f"column_{i + 1}" for i, h in enumerate(header)]
    return dedupe_headers(frame, names)


def read_delimited(
    raw: bytes,
    encodings: Optional[List[str]] = None,
    source_name: str = ""
) -> Tuple[pd.DataFrame, int, str]:
    """
    Parse delimited text with every column as text.

    Tries each encoding in turn, then a final pass on the bytes stripped to
    printable ASCII. Exact duplicate rows are removed (first kept).

    Returns:
        (frame, duplicate rows removed, encoding used)

    Raises:
        ParseError: No attempt produced a frame
    """
    encodings = encodings or settings.FALLBACK_ENCODINGS
    attempts = [(enc, None) for enc in encodings] + [("ascii-stripped", strip_to_ascii)]
    last_error: Optional[Exception] = None

    for encoding, decoder in attempts:
        try:
            text = decoder(raw) if decoder else raw.decode(encoding)
            frame = _parse_text(text)
        except (UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.debug(f"Parsing {source_name} as {encoding} failed: {e}")
            last_error = e
            continue

        before = len(frame)
        frame = frame.drop_duplicates(keep="first").reset_index(drop=True)
        duplicates = before - len(frame)
        if encoding != encodings[0]:
            logger.warning(f"{source_name} parsed with fallback encoding {encoding}")
        if duplicates:
            logger.warning(f"{source_name}: removed {duplicates} duplicate rows")
        return frame, duplicates, encoding

    raise ParseError(
        f"Could not parse {source_name}",
        context={"stage": "parse", "file_path": source_name, "encodings_tried": encodings},
        original_exception=last_error
    )


def _is_encoding_rejection(error: StoreWriteError) -> bool:
    cause = error.original_exception
    if isinstance(cause, UnicodeError):
        return True
    message = str(cause or error).lower()
    return any(marker in message for marker in ENCODING_ERROR_MARKERS)


# ============================================================================
# Import log
# ============================================================================

class ImportLogWriter:
    """Write ImportLog rows and detect column changes between imports."""

    def __init__(self, store: StoreSession):
        self.store = store
        self.store.ensure_bookkeeping()

    def previous_columns(self, table_name: str) -> Optional[List[str]]:
        query = (
            select(ImportLog.columns)
            .where(ImportLog.table_name == table_name)
            .where(ImportLog.status == ImportStatus.SUCCESS.value)
            .order_by(desc(ImportLog.imported_at))
            .limit(1)
        )
        rows = self.store.execute(query)
        if not rows or rows[0][0] is None:
            return None
        return json.loads(rows[0][0])

    def schema_changes(self, table_name: str, columns: List[str]) -> Dict[str, List[str]]:
        previous = self.previous_columns(table_name)
        if previous is None:
            return {}
        added = [c for c in columns if c not in previous]
        removed = [c for c in previous if c not in columns]
        changes = {}
        if added:
            changes["added"] = added
        if removed:
            changes["removed"] = removed
        return changes

    def record(self, result: ImportResult, kind: FileKind, source_url: Optional[str] = None):
        table = result.imported_table
        columns = table.column_names if table else []
        values = {
            "table_name": result.table_name,
            "year": table.year if table else derive_year(result.table_name),
            "kind": kind.value,
            "source_url": source_url,
            "status": result.status.value,
            "stage": result.stage,
            "error_message": result.error,
            "row_count": result.row_count,
            "column_count": len(columns),
            "duplicates_removed": result.duplicates_removed,
            "columns": json.dumps(columns) if table else None,
            "schema_changes": json.dumps(result.schema_changes) if result.schema_changes else None,
        }
        with self.store.begin() as conn:
            conn.execute(insert(ImportLog), [values])


# ============================================================================
# Importer
# ============================================================================

class DataImporter:
    """
    Turn one downloaded data file into a per-year table.

    Args:
        store: Open StoreSession
        coercer_factory: Builds the FrameCoercer for a table name
    """

    def __init__(self, store: StoreSession, coercer_factory=FrameCoercer):
        self.store = store
        self.coercer_factory = coercer_factory
        self.log = ImportLogWriter(store)

    def import_file(
        self,
        path: Union[str, Path],
        table_name: Optional[str] = None,
        source_url: Optional[str] = None
    ) -> ImportResult:
        """
        Import a .zip or .csv file as a table.

        Args:
            path: Local file
            table_name: Target name (derived from the file name if omitted)
            source_url: Recorded in the import log
        """
        path = Path(path)
        name = canonical_table_name(table_name or path.name)
        stage = "unpack"

        try:
            raw, member = load_payload(path)

            stage = "parse"
            frame, duplicates, _ = read_delimited(raw, source_name=member)

            stage = "coerce"
            frame = sanitize_text(frame)
            frame = self.coercer_factory(name).coerce(frame)

            stage = "year"
            frame = inject_year(frame, name)

            stage = "persist"
            self._persist(name, frame)

            imported = ImportedTable.from_columns(
                name, self.store.list_columns(name), len(frame)
            )
            result = ImportResult(
                table_name=name,
                status=ImportStatus.SUCCESS,
                imported_table=imported,
                duplicates_removed=duplicates,
                schema_changes=self.log.schema_changes(name, imported.column_names)
            )
        except StoreConnectionError:
            raise
        except (ImportFailure, StoreWriteError) as e:
            return self._fail(name, stage, e, source_url)
        except Exception as e:
            failure = ImportFailure(
                f"Unexpected error importing {name}",
                context={"stage": stage, "file_path": str(path)},
                original_exception=e
            )
            return self._fail(name, stage, failure, source_url)

        if result.schema_changes:
            logger.warning(f"Schema change in {name}: {result.schema_changes}")
        self.log.record(result, FileKind.DATA, source_url)
        logger.info(
            f"Imported {name}: {result.row_count} rows, "
            f"{len(result.imported_table.columns)} columns"
        )
        return result

    def _fail(self, name: str, stage: str, error, source_url: Optional[str]) -> ImportResult:
        logger.error(
            f"Import of {name} failed at {stage}: {error.message}",
            extra={"error_context": error.to_dict()}
        )
        result = ImportResult(
            table_name=name,
            status=ImportStatus.FAILED,
            stage=stage,
            error=str(error)
        )
        self.log.record(result, FileKind.DATA, source_url)
        return result

    def _persist(self, name: str, frame: pd.DataFrame):
        """Write the table; on an encoding rejection clean aggressively and retry once."""
        try:
            self.store.replace_table(name, frame)
        except StoreWriteError as e:
            if not _is_encoding_rejection(e):
                raise
            logger.warning(f"Store rejected {name} over encoding; retrying with ASCII-only text")
            names = [clean_header(c, aggressive=True) or f"column_{i + 1}" for i, c in enumerate(frame.columns)]
            frame = dedupe_headers(sanitize_text(frame, aggressive=True), names)
            self.store.replace_table(name, frame)
