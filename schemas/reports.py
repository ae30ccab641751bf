"""
Pydantic schemas for validation and status reports
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime


class CheckResult(BaseModel):
    """Outcome of a single check on a table"""

    check: str
    passed: bool
    detail: Optional[str] = None


class TableCheckReport(BaseModel):
    """All checks run against one table"""

    table_name: str
    checks: List[CheckResult] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failures(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.passed]


class ViewStatus(BaseModel):
    view_name: str
    present: bool
    row_count: Optional[int] = None
    source_tables: int = 0


class DatabaseStatus(BaseModel):
    """Snapshot of what the store currently holds"""

    database_url: str
    table_count: int = 0
    tables_by_year: Dict[int, int] = Field(default_factory=dict)
    undated_tables: List[str] = Field(default_factory=list)
    views: List[ViewStatus] = Field(default_factory=list)
    last_run_id: Optional[str] = None
    last_run_status: Optional[str] = None
    last_run_at: Optional[datetime] = None
