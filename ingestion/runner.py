# ============================================================================
# File: ingestion/runner.py
# Description: Update orchestrator for yearly IPEDS releases
# ============================================================================
"""
Update Runner - Orchestrates list, download, import and consolidate.

For each requested year the runner asks the file lister for the year's
SourceFiles, then downloads and imports each one in order. After all years
the metadata views are rebuilt once and a summary is returned.

This module provides:
- Idempotent runs (tables already present are skipped unless forced)
- Partial failure support (one bad file never stops its siblings)
- Politeness delay between remote fetches
- Run bookkeeping in ipeds_update_runs
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional
import json
import logging
import time
import uuid

from sqlalchemy import insert, update

from core.config import settings
from core.database import StoreSession
from core.exceptions import StoreConnectionError
from ingestion.consolidator import SchemaConsolidator
from ingestion.dictionary import DictionaryImporter
from ingestion.downloader import Downloader
from ingestion.importer import DataImporter
from ingestion.listing import FileLister
from ingestion.naming import TABLES_CATALOG
from models.base import ImportStatus, RunStatus
from models.update_run import UpdateRunRecord
from schemas.results import ImportResult, UpdateRunSummary, YearSummary
from schemas.source import SourceFile

logger = logging.getLogger(__name__)


class UpdateRunner:
    """
    Update orchestrator

    Responsibilities:
    - Validate requested years
    - Fetch the file list per year and process each file
    - Skip tables already present unless forced
    - Rebuild the consolidated metadata views once per batch
    - Record the run and return its summary
    """

    def __init__(
        self,
        store: StoreSession,
        file_lister: FileLister,
        downloader: Optional[Downloader] = None,
        data_importer: Optional[DataImporter] = None,
        dictionary_importer: Optional[DictionaryImporter] = None,
        consolidator: Optional[SchemaConsolidator] = None,
        download_dir: Optional[str] = None,
        request_delay: Optional[float] = None,
        keep_downloads: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.file_lister = file_lister
        self.downloader = downloader or Downloader()
        self.data_importer = data_importer or DataImporter(store)
        self.dictionary_importer = dictionary_importer or DictionaryImporter(store)
        self.consolidator = consolidator or SchemaConsolidator(store)
        self.download_dir = Path(download_dir or settings.DOWNLOAD_DIR)
        self.request_delay = settings.REQUEST_DELAY if request_delay is None else request_delay
        self.keep_downloads = settings.KEEP_DOWNLOADS if keep_downloads is None else keep_downloads
        self._sleep = sleep
        self._fetched = False

    # --------------------------------------------------
    # Input validation
    # --------------------------------------------------

    @staticmethod
    def validate_years(years: Iterable[int]) -> List[int]:
        """
        Keep integer years within MIN_YEAR..MAX_YEAR, in order, without repeats.

        Raises:
            ValueError: No valid year was given
        """
        valid = []
        for year in years:
            if isinstance(year, bool) or not isinstance(year, int):
                logger.warning(f"Ignoring non-integer year {year!r}")
                continue
            if not settings.MIN_YEAR <= year <= settings.MAX_YEAR:
                logger.warning(f"Ignoring out-of-range year {year}")
                continue
            if year not in valid:
                valid.append(year)
        if not valid:
            raise ValueError(
                f"No valid years given (expected integers in {settings.MIN_YEAR}-{settings.MAX_YEAR})"
            )
        return valid

    # --------------------------------------------------
    # Check
    # --------------------------------------------------

    def check_updates(
        self,
        years: Iterable[int],
        components: Optional[Iterable[str]] = None
    ) -> Dict[int, List[SourceFile]]:
        """
        Files a non-forced run would download, per year, without fetching them.

        A year whose file list cannot be fetched maps to an empty list.
        """
        wanted = {c.strip().lower() for c in components} if components else None
        pending = {}
        for year in self.validate_years(years):
            try:
                files = list(self.file_lister(year))
            except Exception as e:
                logger.error(f"File list for {year} failed: {e}")
                files = []
            pending[year] = [
                f for f in files
                if (wanted is None or f.survey_component in wanted) and not self._should_skip(f, False)
            ]
        return pending

    # --------------------------------------------------
    # Run
    # --------------------------------------------------

    def run(
        self,
        years: Iterable[int],
        force: bool = False,
        components: Optional[Iterable[str]] = None
    ) -> UpdateRunSummary:
        """
        Run an update for the given years.

        Args:
            years: Years to check
            force: Re-download and re-import tables that already exist
            components: Only process files of these survey components (prefixes)

        Returns:
            UpdateRunSummary with per-year counts and errors

        Raises:
            ValueError: No valid year was given
            StoreConnectionError: The store connection was lost
        """
        years = self.validate_years(years)
        wanted = {c.strip().lower() for c in components} if components else None

        self.store.ensure_bookkeeping()
        summary = UpdateRunSummary(run_id=str(uuid.uuid4()), years_requested=years)
        self._start_record(summary, force)
        logger.info(f"Starting update run {summary.run_id} for years {years} (force={force})")

        for year in years:
            summary.per_year.append(self._run_year(year, force, wanted))

        # --------------------------------------------------
        # RECONSOLIDATE
        # --------------------------------------------------
        summary.consolidation = self.consolidator.consolidate_all()

        # --------------------------------------------------
        # SUMMARIZE
        # --------------------------------------------------
        summary.completed_at = datetime.utcnow()
        summary.status = self._final_status(summary)
        self._finish_record(summary)

        logger.info(
            f"Update run {summary.run_id} {summary.status.value}: "
            f"{summary.files_found} found, {summary.files_downloaded} downloaded, "
            f"{summary.files_imported} imported, {summary.files_skipped} skipped, "
            f"{len(summary.errors)} errors"
        )
        return summary

    def _run_year(self, year: int, force: bool, wanted: Optional[set]) -> YearSummary:
        year_summary = YearSummary(year=year)
        logger.info(f"Checking {year}")

        # --------------------------------------------------
        # FETCH_LIST
        # --------------------------------------------------
        try:
            files = list(self.file_lister(year))
        except Exception as e:
            logger.error(f"File list for {year} failed: {e}", extra={"error_context": {"year": year}})
            year_summary.errors.append(f"{year} [fetch_list]: {e}")
            return year_summary

        if not files:
            logger.warning(f"No files listed for {year}")
            year_summary.errors.append(f"{year} [fetch_list]: no files found")
            return year_summary

        if wanted is not None:
            files = [f for f in files if f.survey_component in wanted]
        year_summary.files_found = len(files)

        # --------------------------------------------------
        # DOWNLOAD + IMPORT
        # --------------------------------------------------
        changed = False
        for source in files:
            try:
                changed |= self._process_file(source, force, year_summary)
            except StoreConnectionError:
                raise
            except Exception as e:
                logger.error(
                    f"Unexpected error processing {source.table_name}: {e}",
                    extra={"error_context": {"table_name": source.table_name, "url": source.url}}
                )
                year_summary.errors.append(f"{source.table_name} [unexpected]: {e}")

        # --------------------------------------------------
        # DICTIONARY FLUSH + CATALOG
        # --------------------------------------------------
        rebuild_catalog = changed or force or not self.store.has_table(TABLES_CATALOG.table_for_year(year))
        for result in self.dictionary_importer.flush_year(year, catalog=rebuild_catalog):
            if not result.ok:
                year_summary.errors.append(result.describe_error())

        return year_summary

    def _should_skip(self, source: SourceFile, force: bool) -> bool:
        if force:
            return False
        if source.is_dictionary:
            # Dictionary tables are shared by the year's workbooks
            return source.table_name in self.dictionary_importer.imported_sources(source.year)
        return self.store.has_table(source.table_name)

    def _download_path(self, source: SourceFile) -> Path:
        suffix = "_dict" if source.is_dictionary else ""
        return self.download_dir / str(source.year) / f"{source.table_name}{suffix}.zip"

    def _process_file(self, source: SourceFile, force: bool, year_summary: YearSummary) -> bool:
        """Download and import one file. Returns True when a table changed."""
        if self._should_skip(source, force):
            logger.info(f"Skipping {source.table_name}: already imported")
            year_summary.files_skipped += 1
            return False

        if self._fetched and self.request_delay > 0:
            self._sleep(self.request_delay)
        self._fetched = True

        dest = self._download_path(source)
        download = self.downloader.download(source.url, dest)
        if not download.ok:
            year_summary.errors.append(f"{source.table_name} [download]: {download.error}")
            return False
        year_summary.files_downloaded += 1

        try:
            if source.is_dictionary:
                result = self.dictionary_importer.import_file(dest, source)
            else:
                result = self.data_importer.import_file(dest, source.table_name, source_url=source.url)
        finally:
            if not self.keep_downloads:
                dest.unlink(missing_ok=True)

        return self._count_import(result, year_summary)

    @staticmethod
    def _count_import(result: ImportResult, year_summary: YearSummary) -> bool:
        if result.status == ImportStatus.SUCCESS:
            year_summary.files_imported += 1
            return True
        if result.status == ImportStatus.FAILED:
            year_summary.errors.append(result.describe_error())
        return False

    @staticmethod
    def _final_status(summary: UpdateRunSummary) -> RunStatus:
        if not summary.errors:
            return RunStatus.SUCCESS
        if summary.files_imported or summary.files_skipped:
            return RunStatus.PARTIAL
        return RunStatus.FAILED

    # --------------------------------------------------
    # Bookkeeping
    # --------------------------------------------------

    def _start_record(self, summary: UpdateRunSummary, force: bool):
        with self.store.begin() as conn:
            conn.execute(insert(UpdateRunRecord), [{
                "run_id": summary.run_id,
                "years": json.dumps(summary.years_requested),
                "forced": int(force),
                "status": RunStatus.RUNNING.value,
                "started_at": summary.started_at,
            }])

    def _finish_record(self, summary: UpdateRunSummary):
        duration = (summary.completed_at - summary.started_at).total_seconds()
        with self.store.begin() as conn:
            conn.execute(
                update(UpdateRunRecord)
                .where(UpdateRunRecord.run_id == summary.run_id)
                .values(
                    status=summary.status.value,
                    completed_at=summary.completed_at,
                    duration_seconds=duration,
                    files_found=summary.files_found,
                    files_downloaded=summary.files_downloaded,
                    files_imported=summary.files_imported,
                    files_skipped=summary.files_skipped,
                    error_count=len(summary.errors),
                    summary=summary.model_dump_json()
                )
            )
