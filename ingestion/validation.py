"""
Post-import checks and a status summary of the store.
"""

from typing import List, Optional
import logging

from sqlalchemy import column, desc, func, or_, select, table

from core.config import settings
from core.database import StoreSession
from ingestion.naming import METADATA_COMPONENTS, derive_year, is_metadata_table
from models.update_run import UpdateRunRecord
from schemas.reports import CheckResult, DatabaseStatus, TableCheckReport, ViewStatus

logger = logging.getLogger(__name__)

BOOKKEEPING_PREFIX = "ipeds_"


def data_tables(store: StoreSession) -> List[str]:
    return [
        name for name in store.list_tables()
        if not name.startswith(BOOKKEEPING_PREFIX) and not is_metadata_table(name)
    ]


def _find_column(store: StoreSession, table_name: str, wanted: str) -> Optional[str]:
    for name, _ in store.list_columns(table_name):
        if name.upper() == wanted.upper():
            return name
    return None


def _scalar(store: StoreSession, query) -> int:
    rows = store.execute(query)
    return int(rows[0][0] or 0) if rows else 0


def check_table(store: StoreSession, table_name: str) -> TableCheckReport:
    """Run every check against one table."""
    report = TableCheckReport(table_name=table_name)

    if not store.has_table(table_name):
        report.checks.append(CheckResult(check="exists", passed=False, detail="table not found"))
        return report
    report.checks.append(CheckResult(check="exists", passed=True))

    columns = [name for name, _ in store.list_columns(table_name)]
    relation = table(table_name, *[column(c) for c in columns])

    rows = store.row_count(table_name)
    report.checks.append(CheckResult(check="not_empty", passed=rows > 0, detail=f"{rows} rows"))

    identifier = _find_column(store, table_name, settings.IDENTIFIER_COLUMN)
    if identifier is not None:
        id_col = relation.c[identifier]
        bad = _scalar(store, select(func.count()).select_from(relation).where(
            or_(id_col.is_(None), id_col <= 0)
        ))
        report.checks.append(CheckResult(
            check="identifier_valid",
            passed=bad == 0,
            detail=f"{bad} null or non-positive {identifier} values" if bad else None
        ))

    year_column = _find_column(store, table_name, "YEAR")
    expected_year = derive_year(table_name)
    if year_column is not None and expected_year is not None:
        year_col = relation.c[year_column]
        bad = _scalar(store, select(func.count()).select_from(relation).where(
            or_(year_col.is_(None), year_col != expected_year)
        ))
        report.checks.append(CheckResult(
            check="year_consistent",
            passed=bad == 0,
            detail=f"{bad} rows with YEAR other than {expected_year}" if bad else None
        ))

    distinct = select(*[relation.c[c] for c in columns]).select_from(relation).distinct().subquery()
    unique_rows = _scalar(store, select(func.count()).select_from(distinct))
    duplicates = rows - unique_rows
    report.checks.append(CheckResult(
        check="no_duplicate_rows",
        passed=duplicates == 0,
        detail=f"{duplicates} duplicate rows" if duplicates else None
    ))

    for failure in report.failures:
        logger.warning(f"{table_name}: check {failure.check} failed ({failure.detail})")
    return report


def validate_tables(
    store: StoreSession,
    table_names: Optional[List[str]] = None
) -> List[TableCheckReport]:
    """Check the named tables, or every data table in the store."""
    names = table_names if table_names is not None else data_tables(store)
    return [check_table(store, name.lower()) for name in names]


def database_status(store: StoreSession) -> DatabaseStatus:
    """Summarize tables per year, consolidated views and the last update run."""
    tables = data_tables(store)
    status = DatabaseStatus(database_url=store.database_url, table_count=len(tables))

    for name in tables:
        year = derive_year(name)
        if year is None:
            status.undated_tables.append(name)
        else:
            status.tables_by_year[year] = status.tables_by_year.get(year, 0) + 1

    views = set(store.list_views())
    all_tables = store.list_tables()
    for component in METADATA_COMPONENTS:
        present = component.view_name in views
        status.views.append(ViewStatus(
            view_name=component.view_name,
            present=present,
            row_count=store.row_count(component.view_name) if present else None,
            source_tables=sum(1 for t in all_tables if component.matches(t))
        ))

    if UpdateRunRecord.__tablename__ in all_tables:
        rows = store.execute(
            select(UpdateRunRecord.run_id, UpdateRunRecord.status, UpdateRunRecord.started_at)
            .order_by(desc(UpdateRunRecord.started_at))
            .limit(1)
        )
        if rows:
            status.last_run_id, status.last_run_status, status.last_run_at = rows[0]
    return status
