import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import StoreSession
from core.logging import setup_logging

logger = logging.getLogger(__name__)


def init_database():
    logger.info(f"Connecting to {settings.DATABASE_URL}...")
    with StoreSession(settings.DATABASE_URL) as store:
        logger.info("Creating bookkeeping tables...")
        store.ensure_bookkeeping()
        logger.info("Tables created successfully.")


if __name__ == "__main__":
    setup_logging()
    init_database()
