from sqlalchemy import Column, String, Integer, Float, Text, DateTime
from datetime import datetime
from models.base import Base, RunStatus

class UpdateRunRecord(Base):
    """
    Tracks metadata for each update run.

    Purpose:
    - Audit trail of all runs (what years, what came of them)
    - Last-update reporting in the database status summary
    """
    __tablename__ = "ipeds_update_runs"

    run_id = Column(String(36), primary_key=True)

    # Run metadata
    years = Column(Text, nullable=False)  # JSON list of requested years
    forced = Column(Integer, default=0)
    status = Column(String(20), default=RunStatus.RUNNING.value, nullable=False)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    files_found = Column(Integer, default=0)
    files_downloaded = Column(Integer, default=0)
    files_imported = Column(Integer, default=0)
    files_skipped = Column(Integer, default=0)
    error_count = Column(Integer, default=0)

    # Full per-year summary
    summary = Column(Text, nullable=True)  # JSON
