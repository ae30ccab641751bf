"""
Application configuration using Pydantic Settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, Dict, List


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Store
    DATABASE_URL: str = "duckdb:///data/ipeds.duckdb"

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Downloads
    DOWNLOAD_DIR: str = "data/downloads"
    KEEP_DOWNLOADS: bool = False
    DOWNLOAD_MAX_ATTEMPTS: int = 5
    DOWNLOAD_RETRY_DELAY: float = 1.0
    DOWNLOAD_TIMEOUT: float = 120.0
    REQUEST_DELAY: float = 1.0  # Politeness throttle between remote fetches

    # Payload size floors (bytes)
    MIN_BYTES_SURVEY_FILE: int = 1_000
    MIN_BYTES_SNAPSHOT: int = 50_000_000

    # Source listing
    NCES_DATA_FILES_URL: str = "https://nces.ed.gov/ipeds/datacenter/DataFiles.aspx"
    NCES_DATA_BASE_URL: str = "https://nces.ed.gov/ipeds/datacenter/data/"
    MIN_YEAR: int = 1990
    MAX_YEAR: int = 2100

    # Import
    FALLBACK_ENCODINGS: List[str] = ["utf-8", "cp1252", "latin-1"]
    IDENTIFIER_COLUMN: str = "UNITID"
    CODED_COLUMN_SUFFIXES: List[str] = ["CODE", "LEVEL", "TYPE", "CAT"]

    # Explicit missing-value codes per table prefix, e.g. {"hd": [-1, -2]}.
    # Prefixes without an entry fall back to "every negative number is missing".
    MISSING_VALUE_CODES: Dict[str, List[int]] = {}

    # Optional override for the year a run checks when none is given
    DEFAULT_YEAR: Optional[int] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
