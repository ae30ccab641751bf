"""
Table and column naming rules shared by the importer and the consolidator.

Handles:
- Canonical lowercase table names
- Year derivation from a table name
- Column spelling variants across survey eras (fixed synonym table)
- Survey component registry (which tables feed which consolidated view)
"""

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional, Tuple
import re

ARCHIVE_SUFFIXES = (".zip", ".csv", ".xlsx", ".xls")
PACKAGE_SUFFIXES = ("_data_stata", "_stata", "_dict", "_sps", "_sas")

YEAR_4_RE = re.compile(r"(?<!\d)(20\d{2})")
YEAR_RANGE_RE = re.compile(r"(?<!\d)(\d{2})(\d{2})(?!\d)")
YEAR_2_RE = re.compile(r"(?<!\d)(\d{2})(?:_[a-z0-9]+)?$")
PREFIX_RE = re.compile(r"^[a-z]+")

# Spelling variants that mean the same column in different eras. Keys are
# the lowercase alphanumeric form of the name; values are the canonical name.
# A new era that introduces another variant needs an entry here.
COLUMN_SYNONYMS = {
    "releasedate": "Release date",
    "surveyorder": "SurveyOrder",
    "surveynumber": "SurveyNumber",
    "yearcoverage": "YearCoverage",
    "tablename": "TableName",
    "tablenumber": "Tablenumber",
    "tabletitle": "TableTitle",
    "varname": "varName",
    "vartitle": "varTitle",
    "vartype": "varType",
    "varlength": "varLength",
    "varnumber": "varNumber",
    "datatype": "DataType",
    "fieldwidth": "FieldWidth",
    "valuelabel": "valueLabel",
    "valuelabels": "valueLabel",
    "codevalue": "Codevalue",
    "longdescription": "longDescription",
    "unitid": "UNITID",
    "year": "YEAR",
}


def column_key(name: str) -> str:
    """Comparison key for a column: lowercase, alphanumerics only."""
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def canonical_column_name(name: str) -> str:
    """Canonical spelling of a column (synonym table, else the stripped name)."""
    stripped = str(name).strip().lstrip("\ufeff")
    return COLUMN_SYNONYMS.get(column_key(stripped), stripped)


def is_year_column(name: str) -> bool:
    return column_key(name) == "year"


def canonical_table_name(name: str) -> str:
    """
    Canonical lowercase table name for a file name or raw table name.

    "HD2023.zip" -> "hd2023", "C2023_A_Dict.zip" -> "c2023_a",
    "Tables23" -> "tables23".
    """
    base = PurePosixPath(str(name).strip()).name.lower()
    for suffix in ARCHIVE_SUFFIXES:
        if base.endswith(suffix):
            base = base[: -len(suffix)]
    for suffix in PACKAGE_SUFFIXES:
        if base.endswith(suffix):
            base = base[: -len(suffix)]
            break
    base = re.sub(r"[^a-z0-9_]+", "_", base).strip("_")
    if not base:
        raise ValueError(f"Cannot derive a table name from {name!r}")
    return base


def derive_year(table_name: str) -> Optional[int]:
    """
    Year encoded in a table name, never read from row content.

    Rules in order:
    - first 4-digit 20XX token ("hd2022", "c2023_a")
    - a 4-digit academic-year range, second half wins ("sfa1819_p1" -> 2019)
    - trailing 2-digit token, optionally before one _suffix, read as 20XX
      ("tables06" -> 2006, "c23_a" -> 2023)
    """
    name = str(table_name).lower()

    match = YEAR_4_RE.search(name)
    if match:
        return int(match.group(1))

    match = YEAR_RANGE_RE.search(name)
    if match:
        return 2000 + int(match.group(2))

    match = YEAR_2_RE.search(name)
    if match:
        return 2000 + int(match.group(1))

    return None


def year_suffix(year: int) -> str:
    return f"{int(year) % 100:02d}"


def table_prefix(table_name: str) -> str:
    """Alphabetic survey prefix of a table name ("ef2022a" -> "ef")."""
    match = PREFIX_RE.match(str(table_name).lower())
    return match.group(0) if match else ""


# ============================================================================
# Survey components
# ============================================================================

@dataclass(frozen=True)
class SurveyComponent:
    """A family of per-year tables that consolidate into one view."""

    name: str
    pattern: str
    description: str = ""

    @property
    def view_name(self) -> str:
        return f"{self.name}_all"

    def matches(self, table_name: str) -> bool:
        return re.match(self.pattern, table_name) is not None

    def table_for_year(self, year: int) -> str:
        return f"{self.name}{year_suffix(year)}"


TABLES_CATALOG = SurveyComponent(
    name="tables",
    pattern=r"^tables\d{2}$",
    description="Catalog of the data tables published for each year"
)

VARIABLE_DICTIONARY = SurveyComponent(
    name="vartable",
    pattern=r"^vartable\d{2}$",
    description="Variable names and titles from the Varlist sheets"
)

VALUE_DICTIONARY = SurveyComponent(
    name="valuesets",
    pattern=r"^valuesets\d{2}$",
    description="Code-to-label mappings from the Description/Frequencies sheets"
)

METADATA_COMPONENTS: Tuple[SurveyComponent, ...] = (
    TABLES_CATALOG,
    VARIABLE_DICTIONARY,
    VALUE_DICTIONARY,
)


def is_metadata_table(table_name: str) -> bool:
    return any(component.matches(table_name) for component in METADATA_COMPONENTS)


def component_for_prefix(prefix: str, suffix: Optional[str] = None) -> SurveyComponent:
    """
    Ad hoc component for a data survey, e.g. "hd" -> hd2004 ... hd2023.

    With a suffix only that part is consolidated: ("c", "a") -> c2022_a, ...
    """
    prefix = re.escape(prefix.lower())
    if suffix:
        suffix = re.escape(suffix.lower())
        return SurveyComponent(
            name=f"{prefix}_{suffix}",
            pattern=rf"^{prefix}(20)?\d{{2}}_{suffix}$"
        )
    return SurveyComponent(name=prefix, pattern=rf"^{prefix}(20)?\d{{2}}$")


def component_by_name(name: str) -> SurveyComponent:
    """
    Component for a command-line name: a metadata component ("vartable"),
    a survey prefix ("hd") or a prefix with its part ("c_a").
    """
    name = name.strip().lower()
    for component in METADATA_COMPONENTS:
        if component.name == name:
            return component
    prefix, _, suffix = name.partition("_")
    if not prefix.isalpha():
        raise ValueError(f"Not a survey component: {name!r}")
    return component_for_prefix(prefix, suffix or None)
