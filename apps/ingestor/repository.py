"""
Review Repository - Idempotent Persistence of Normalized Reviews

Each save is an independent upsert keyed by review id; re-submitting an id
is a no-op. Uniqueness is enforced by the table's primary key.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from apps.ingestor.errors import PersistenceError
from utils.db import get_conn, init_schema
from utils.schemas import Review

logger = logging.getLogger(__name__)

INSERT_REVIEW_SQL = """
    INSERT INTO raw_reviews (
        id, app_id, country, rating, title, content,
        reviewed_at, response_date, response_content
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (id) DO NOTHING
"""


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ReviewRepository:
    """SQLite-backed store of raw reviews."""

    def __init__(self, conn: Optional[sqlite3.Connection] = None, path: Optional[str] = None) -> None:
        """
        Initialize repository and ensure the schema exists.

        Args:
            conn: Existing connection to use
            path: Database path when no connection is given, defaults to settings.SQLITE_PATH
        """
        self.conn = conn or get_conn(path)
        init_schema(self.conn)

    def save_raw_review(self, review: Review) -> None:
        """
        Insert a review unless its id is already stored.

        Raises:
            PersistenceError: If the insert fails
        """
        response = review.developer_response
        try:
            self.conn.execute(
                INSERT_REVIEW_SQL,
                (
                    review.id,
                    review.app_id,
                    review.country,
                    review.rating,
                    review.title,
                    review.content,
                    _isoformat(review.reviewed_at),
                    _isoformat(response.responded_at) if response else None,
                    response.content if response else None,
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(review.id, str(e)) from e

    def get(self, review_id: str) -> Optional[sqlite3.Row]:
        return self.conn.execute("SELECT * FROM raw_reviews WHERE id = ?", (review_id,)).fetchone()

    def count(self, app_id: Optional[str] = None) -> int:
        if app_id is None:
            row = self.conn.execute("SELECT COUNT(*) FROM raw_reviews").fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) FROM raw_reviews WHERE app_id = ?", (app_id,)).fetchone()
        return row[0]

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "ReviewRepository":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
