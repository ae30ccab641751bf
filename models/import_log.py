from sqlalchemy import Column, String, Integer, Text, DateTime, Index
from datetime import datetime
import uuid
from models.base import Base, ImportStatus

class ImportLog(Base):
    """
    One row per import attempt of a per-year table.

    Purpose:
    - Version history of every (re-)import
    - Schema drift detection between successive imports of a table
    - Debugging failed imports (stage and message)

    Design Decisions:
    - String uuid primary key; DuckDB has no implicit autoincrement
    - JSON payloads stored as text for portability across stores
    """
    __tablename__ = "ipeds_import_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Table identification
    table_name = Column(String(100), nullable=False, index=True)
    year = Column(Integer, nullable=True)
    kind = Column(String(20), nullable=False)
    source_url = Column(String(2048), nullable=True)

    # Outcome
    status = Column(String(20), nullable=False, default=ImportStatus.SUCCESS.value)
    stage = Column(String(20), nullable=True)
    error_message = Column(Text, nullable=True)

    # Statistics
    row_count = Column(Integer, default=0)
    column_count = Column(Integer, default=0)
    duplicates_removed = Column(Integer, default=0)
    columns = Column(Text, nullable=True)  # JSON list of column names
    schema_changes = Column(Text, nullable=True)  # JSON {"added": [...], "removed": [...]}

    imported_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_import_log_table_time", "table_name", "imported_at"),
    )
