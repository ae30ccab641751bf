"""
Pydantic schemas for data validation and serialization.

Schemas:
    source: Core entities (SourceFile, ImportedTable, ConsolidatedView)
    results: Per-item outcomes (DownloadResult, ImportResult,
             ConsolidationResult) and the update run summary
    reports: Validation and database status reports

Usage:
    from schemas.source import SourceFile
    from schemas.results import ImportResult, UpdateRunSummary

Example:
    source = SourceFile(
        year=2023,
        survey_component="hd",
        kind=FileKind.DATA,
        url="https://nces.ed.gov/ipeds/datacenter/data/HD2023.zip",
        table_name="HD2023.zip"
    )
    assert source.table_name == "hd2023"
"""

__all__ = [
    "SourceFile",
    "ColumnInfo",
    "ImportedTable",
    "ConsolidatedView",
    "DownloadResult",
    "ImportResult",
    "ConsolidationResult",
    "YearSummary",
    "UpdateRunSummary",
    "CheckResult",
    "TableCheckReport",
    "DatabaseStatus",
]
