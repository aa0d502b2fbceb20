"""
Receipt Duplicate Detection.

Cross-submission duplicate history keyed by:
1. Image content hash (SHA-256 of the raw bytes): catches re-sent images
2. Oracle receipt id: catches re-photographed copies of the same receipt

Keys are stored in a lightweight SQLite database, one connection per thread.
"""

import logging
import os
import sqlite3
import threading
from typing import Optional, Sequence

from loyaltyguard.repository.base import HashHistory

logger = logging.getLogger(__name__)

RECEIPT_ID_PREFIX = "rid:"


def receipt_id_key(receipt_id: str) -> str:
    """History key for an oracle-extracted receipt id."""
    return RECEIPT_ID_PREFIX + " ".join(str(receipt_id).split()).upper()


class FingerprintStore(HashHistory):
    """SQLite-backed history of submitted content hashes."""

    def __init__(self, db_path: str):
        self.db_path = os.path.abspath(db_path)
        self._local = threading.local()

    def _get_db(self) -> sqlite3.Connection:
        """Get thread-local SQLite connection, creating tables if needed."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables(conn)
            self._local.conn = conn
        return conn

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS submission_hashes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                hash_key TEXT NOT NULL,
                receipt_id TEXT,
                created_at TEXT DEFAULT (datetime('now')),
                UNIQUE(hash_key)
            );
            CREATE INDEX IF NOT EXISTS idx_hash_key ON submission_hashes(hash_key);
        """)
        conn.commit()

    def check_duplicate_hash(self, key: str) -> bool:
        """
        True if the key was recorded by an earlier submission.

        Errors propagate; callers wrap this in guarded_call so a broken
        database fails open.
        """
        if not key:
            return False
        row = self._get_db().execute(
            "SELECT receipt_id FROM submission_hashes WHERE hash_key = ?",
            (key,),
        ).fetchone()
        if row:
            logger.warning(f"DUPLICATE DETECTED: {key[:16]}... first seen in receipt {row['receipt_id']}")
            return True
        return False

    def record_hashes(self, keys: Sequence[str], receipt_id: Optional[str] = None) -> int:
        db = self._get_db()
        inserted = 0
        for key in dict.fromkeys(k for k in keys if k):
            cursor = db.execute(
                "INSERT OR IGNORE INTO submission_hashes (hash_key, receipt_id) VALUES (?, ?)",
                (key, receipt_id),
            )
            inserted += cursor.rowcount
        db.commit()
        logger.debug(f"Recorded {inserted} new hash(es) for receipt {receipt_id}")
        return inserted

    def count(self) -> int:
        row = self._get_db().execute("SELECT COUNT(*) AS cnt FROM submission_hashes").fetchone()
        return row["cnt"] if row else 0

