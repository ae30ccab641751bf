from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class FileKind(str, enum.Enum):
    """Kinds of published artifacts"""
    DATA = "data"
    DICTIONARY = "dictionary"


class ImportStatus(str, enum.Enum):
    """Outcome of one file import"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, enum.Enum):
    """Update run status"""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"
