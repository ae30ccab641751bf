"""
Column type coercion, character sanitization and year injection for
imported survey tables.

Input frames hold every column as text (missing values as NA); the output
carries integer, float or text columns ready to persist.
"""

from typing import Dict, Iterable, List, Optional
import logging
import re

import pandas as pd

from core.config import settings
from core.exceptions import YearDerivationError
from ingestion.naming import derive_year, is_year_column, table_prefix

logger = logging.getLogger(__name__)

CONTROL_CHARS_RE = r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]"
NON_PRINTABLE_ASCII_RE = r"[^\x20-\x7e]"
WHITESPACE_RE = r"\s+"

YEAR_COLUMN = "YEAR"


def _text_columns(frame: pd.DataFrame) -> List[str]:
    return [c for c in frame.columns if not pd.api.types.is_numeric_dtype(frame[c])]


def _clean(value: str, aggressive: bool = False) -> str:
    pattern = NON_PRINTABLE_ASCII_RE if aggressive else CONTROL_CHARS_RE
    value = re.sub(pattern, "" if aggressive else " ", value)
    return re.sub(WHITESPACE_RE, " ", value).strip()


def clean_header(name, aggressive: bool = False) -> str:
    """Header name without control characters or repeated whitespace."""
    return _clean(str(name), aggressive)


def sanitize_text(frame: pd.DataFrame, aggressive: bool = False) -> pd.DataFrame:
    """
    Clean text cells; headers are left alone.

    Normal mode removes control characters and collapses whitespace.
    Aggressive mode additionally keeps printable ASCII only; it is the
    fallback when the store rejects a write over encoding.
    """
    frame = frame.copy()
    for column in _text_columns(frame):
        series = frame[column]
        mask = series.notna()
        cleaned = series[mask].astype(str).map(lambda value: _clean(value, aggressive))
        frame[column] = series.where(~mask, cleaned)
        # Cells that were only whitespace or control characters become missing
        frame.loc[frame[column] == "", column] = pd.NA
    return frame


def to_integer(series: pd.Series) -> pd.Series:
    """Nullable integer column; unparseable or fractional values become null."""
    numeric = pd.to_numeric(series, errors="coerce")
    numeric = numeric.where(numeric.isna() | (numeric % 1 == 0))
    return numeric.round().astype("Int64")


def infer_column(series: pd.Series) -> pd.Series:
    """Integer if every value is a whole number, float if numeric, else text."""
    values = series.dropna()
    if values.empty:
        return series
    numeric = pd.to_numeric(values, errors="coerce")
    if numeric.isna().any():
        return series
    if (numeric % 1 == 0).all():
        return to_integer(series)
    return pd.to_numeric(series, errors="coerce").astype("float64")


class FrameCoercer:
    """
    Coerce the text columns of one survey table to typed columns.

    Handles:
    - Type inference (integer / float / text)
    - Identifier column forced to integer
    - Coded columns (suffix CODE, LEVEL, TYPE, CAT) forced to integer
    - Missing-value codes (explicit per table prefix, else negatives)
    """

    def __init__(
        self,
        table_name: str,
        identifier_column: Optional[str] = None,
        coded_suffixes: Optional[Iterable[str]] = None,
        missing_value_codes: Optional[Dict[str, List[int]]] = None
    ):
        self.table_name = table_name
        self.identifier_column = (identifier_column or settings.IDENTIFIER_COLUMN).upper()
        self.coded_suffixes = tuple(
            s.upper() for s in (coded_suffixes or settings.CODED_COLUMN_SUFFIXES)
        )
        codes = settings.MISSING_VALUE_CODES if missing_value_codes is None else missing_value_codes
        self.missing_codes = codes.get(table_prefix(table_name))

    def is_identifier(self, column: str) -> bool:
        return str(column).upper() == self.identifier_column

    def is_coded(self, column: str) -> bool:
        return str(column).upper().endswith(self.coded_suffixes)

    def coerce(self, frame: pd.DataFrame) -> pd.DataFrame:
        frame = frame.copy()
        for column in frame.columns:
            if self.is_identifier(column) or self.is_coded(column):
                frame[column] = to_integer(frame[column])
            else:
                frame[column] = infer_column(frame[column])
            if pd.api.types.is_numeric_dtype(frame[column]) and not self.is_identifier(column):
                frame[column] = self._apply_missing_codes(frame[column])
        return frame

    def _apply_missing_codes(self, series: pd.Series) -> pd.Series:
        if self.missing_codes is not None:
            missing = series.isin(self.missing_codes)
        else:
            missing = series < 0
        missing = missing.fillna(False).astype(bool)
        if missing.any():
            return series.mask(missing)
        return series


def inject_year(
    frame: pd.DataFrame,
    table_name: str,
    identifier_column: Optional[str] = None
) -> pd.DataFrame:
    """
    Ensure the frame carries an integer YEAR column.

    An existing year column (any case) is renamed YEAR and its missing
    values are filled from the table name. Otherwise YEAR is derived from
    the table name and inserted right after the identifier column, or first.

    Raises:
        YearDerivationError: No year column and no year in the table name
    """
    identifier = (identifier_column or settings.IDENTIFIER_COLUMN).upper()
    year = derive_year(table_name)
    existing = [c for c in frame.columns if is_year_column(c)]

    if existing:
        frame = frame.rename(columns={existing[0]: YEAR_COLUMN})
        values = to_integer(frame[YEAR_COLUMN])
        if year is not None:
            values = values.fillna(year)
        frame[YEAR_COLUMN] = values
        return frame

    if year is None:
        raise YearDerivationError(
            f"Cannot derive a year for {table_name}",
            context={"table_name": table_name, "stage": "year"}
        )

    frame = frame.copy()
    columns = [str(c).upper() for c in frame.columns]
    position = columns.index(identifier) + 1 if identifier in columns else 0
    frame.insert(position, YEAR_COLUMN, pd.Series([year] * len(frame), index=frame.index, dtype="Int64"))
    logger.debug(f"Injected {YEAR_COLUMN}={year} into {table_name} at position {position}")
    return frame
