"""
Database utilities for SQLite operations.

Provides connection management and schema initialization for the review ingestor.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from utils.config import settings

logger = logging.getLogger(__name__)


def get_conn(path: Optional[str] = None) -> sqlite3.Connection:
    """
    Get SQLite database connection with dict-friendly row factory.

    Args:
        path: Database file path, defaults to settings.SQLITE_PATH

    Returns:
        SQLite connection with row_factory set to sqlite3.Row

    Raises:
        sqlite3.Error: If connection fails
    """
    db_path = path or settings.SQLITE_PATH

    # Ensure database directory exists
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_schema(conn: Optional[sqlite3.Connection] = None) -> None:
    """
    Initialize database schema by creating required tables if they don't exist.

    Creates:
    - raw_reviews: one row per review id, developer response columns nullable

    Args:
        conn: Existing connection to use, a fresh one is opened otherwise

    Raises:
        sqlite3.Error: If schema creation fails
    """
    own_conn = conn is None
    if own_conn:
        conn = get_conn()

    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS raw_reviews (
                id TEXT PRIMARY KEY,
                app_id TEXT NOT NULL,
                country TEXT NOT NULL,
                rating INTEGER NOT NULL,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                reviewed_at TEXT NOT NULL,
                response_date TEXT,
                response_content TEXT
            )
        """)

        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_raw_reviews_app_country
            ON raw_reviews (app_id, country)
        """)

        conn.commit()
    finally:
        if own_conn:
            conn.close()

    logger.info("DB schema ready")
