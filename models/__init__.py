"""
SQLAlchemy models for the pipeline's own bookkeeping tables.

The per-year survey tables are created dynamically from DataFrames and have
no ORM model; only the run bookkeeping is declared here:

Models:
    base: Base declarative class and shared enums (FileKind, ImportStatus, RunStatus)
    import_log: One row per import attempt with schema-change details
    update_run: One row per update run with its summary

Usage:
    from models.import_log import ImportLog
    from models.update_run import UpdateRunRecord
    from models.base import FileKind, RunStatus
"""

__all__ = [
    "Base",
    "FileKind",
    "ImportStatus",
    "RunStatus",
    "ImportLog",
    "UpdateRunRecord",
]
