"""
Per-item result values returned by pipeline components.

Expected failures (a file that will not download, a table that will not
parse, a view the store rejects) are returned as data in these models
rather than raised, so one bad item never aborts its siblings.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum
from models.base import ImportStatus, RunStatus
from schemas.source import ImportedTable, ConsolidatedView


class DownloadStatus(str, Enum):
    DOWNLOADED = "downloaded"
    FAILED = "failed"


class ConsolidationStatus(str, Enum):
    BUILT = "built"
    SKIPPED = "skipped"
    FAILED = "failed"


class DownloadResult(BaseModel):
    """Outcome of fetching one remote file"""

    url: str
    resolved_url: str
    path: str
    status: DownloadStatus
    attempts: int = 0
    bytes: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == DownloadStatus.DOWNLOADED


class ImportResult(BaseModel):
    """Outcome of importing one file (or one dictionary role) as a table"""

    table_name: str
    status: ImportStatus
    stage: Optional[str] = None
    error: Optional[str] = None
    imported_table: Optional[ImportedTable] = None
    duplicates_removed: int = 0
    schema_changes: Dict[str, List[str]] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == ImportStatus.SUCCESS

    @property
    def row_count(self) -> int:
        return self.imported_table.row_count if self.imported_table else 0

    def describe_error(self) -> str:
        return f"{self.table_name} [{self.stage or 'import'}]: {self.error}"


class ConsolidationResult(BaseModel):
    """Outcome of rebuilding one component's consolidated view"""

    component: str
    view_name: str
    status: ConsolidationStatus
    view: Optional[ConsolidatedView] = None
    padded_columns: Dict[str, List[str]] = Field(default_factory=dict)
    cast_columns: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != ConsolidationStatus.FAILED


class YearSummary(BaseModel):
    """Per-year counts of one update run"""

    year: int
    files_found: int = 0
    files_downloaded: int = 0
    files_imported: int = 0
    files_skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class UpdateRunSummary(BaseModel):
    """Summary returned to the caller of an update run"""

    run_id: str
    years_requested: List[int]
    status: RunStatus = RunStatus.RUNNING
    per_year: List[YearSummary] = Field(default_factory=list)
    consolidation: List[ConsolidationResult] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def errors(self) -> List[str]:
        errors = [e for year in self.per_year for e in year.errors]
        errors.extend(
            f"{r.view_name} [consolidate]: {r.error}"
            for r in self.consolidation if r.status == ConsolidationStatus.FAILED
        )
        return errors

    @property
    def files_found(self) -> int:
        return sum(y.files_found for y in self.per_year)

    @property
    def files_downloaded(self) -> int:
        return sum(y.files_downloaded for y in self.per_year)

    @property
    def files_imported(self) -> int:
        return sum(y.files_imported for y in self.per_year)

    @property
    def files_skipped(self) -> int:
        return sum(y.files_skipped for y in self.per_year)

    def for_year(self, year: int) -> Optional[YearSummary]:
        for summary in self.per_year:
            if summary.year == year:
                return summary
        return None
