"""
Command-line entry point for IPEDS database updates.

Actions:
    check_updates  List files not yet imported for a year
    download       Download and import a year's files, then rebuild views
    consolidate    Rebuild the metadata views, or the views of given surveys
    validate       Run post-import checks on tables
    status         Summarize what the database holds

Examples:
    python scripts/run_update.py check_updates --year 2023
    python scripts/run_update.py download --year 2023 --tables hd ic --force
    python scripts/run_update.py validate --tables hd2023
    python scripts/run_update.py consolidate --tables hd c_a
"""

import argparse
import logging
import sys
import os
from datetime import date

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import StoreSession
from core.exceptions import StoreConnectionError
from core.logging import setup_logging
from ingestion.consolidator import SchemaConsolidator
from ingestion.listing import NcesFileLister
from ingestion.naming import component_by_name
from ingestion.runner import UpdateRunner
from ingestion.validation import database_status, validate_tables
from schemas.results import ConsolidationStatus

logger = logging.getLogger(__name__)


def default_years(years):
    if years:
        return years
    return [settings.DEFAULT_YEAR or date.today().year - 1]


def check_updates(store: StoreSession, args) -> int:
    lister = NcesFileLister()
    try:
        pending = UpdateRunner(store, lister).check_updates(default_years(args.year), args.tables)
    finally:
        lister.close()

    total = sum(len(files) for files in pending.values())
    if total == 0:
        print("No updates found. The database appears to be current.")
        return 0

    print(f"Found {total} files not yet imported:")
    for year, files in pending.items():
        for source in files:
            print(f"  {year}  {source.kind.value:<10}  {source.table_name:<20}  {source.url}")
    return 0


def download(store: StoreSession, args) -> int:
    lister = NcesFileLister()
    runner = UpdateRunner(store, lister)
    try:
        summary = runner.run(default_years(args.year), force=args.force, components=args.tables)
    finally:
        runner.downloader.close()
        lister.close()

    print(f"Update run {summary.run_id}: {summary.status.value}")
    for year in summary.per_year:
        print(
            f"  {year.year}: {year.files_found} found, {year.files_downloaded} downloaded, "
            f"{year.files_imported} imported, {year.files_skipped} skipped, {len(year.errors)} errors"
        )
    for result in summary.consolidation:
        print(f"  {result.view_name}: {result.status.value}")
    for error in summary.errors:
        print(f"  ERROR {error}")
    return 0 if not summary.errors else 1


def consolidate(store: StoreSession, args) -> int:
    components = [component_by_name(name) for name in args.tables] if args.tables else None
    results = SchemaConsolidator(store).consolidate_all(components)
    for result in results:
        line = f"  {result.view_name}: {result.status.value}"
        if result.view:
            line += f" ({len(result.view.source_tables)} tables, {len(result.view.columns)} columns)"
        print(line)
        if result.error:
            print(f"  ERROR {result.view_name}: {result.error}")
    return 0 if all(r.status != ConsolidationStatus.FAILED for r in results) else 1


def validate(store: StoreSession, args) -> int:
    reports = validate_tables(store, args.tables)
    failed = [r for r in reports if not r.passed]
    for report in reports:
        print(f"  {'OK  ' if report.passed else 'FAIL'} {report.table_name}")
        for check in report.failures:
            print(f"         {check.check}: {check.detail}")
    print(f"{len(reports) - len(failed)}/{len(reports)} tables passed")
    return 0 if not failed else 1


def status(store: StoreSession, args) -> int:
    info = database_status(store)
    print(f"Database: {info.database_url}")
    print(f"Data tables: {info.table_count}")
    for year in sorted(info.tables_by_year):
        print(f"  {year}: {info.tables_by_year[year]} tables")
    for view in info.views:
        state = f"{view.row_count} rows from {view.source_tables} tables" if view.present else "missing"
        print(f"  {view.view_name}: {state}")
    if info.last_run_id:
        print(f"Last update: {info.last_run_at} ({info.last_run_status})")
    return 0


ACTIONS = {
    "check_updates": check_updates,
    "consolidate": consolidate,
    "download": download,
    "validate": validate,
    "status": status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Maintain the IPEDS survey database")
    parser.add_argument("action", choices=sorted(ACTIONS))
    parser.add_argument("--year", type=int, nargs="+", help="Year(s) to process (default: last year)")
    parser.add_argument("--tables", nargs="+", help="Survey components (check_updates/download/consolidate) or table names (validate)")
    parser.add_argument("--force", action="store_true", help="Re-import tables that already exist")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        with StoreSession(args.database_url or settings.DATABASE_URL) as store:
            return ACTIONS[args.action](store, args)
    except StoreConnectionError as e:
        logger.error(f"Cannot open the database: {e}", extra={"error_context": e.to_dict()})
        return 1
    except ValueError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
