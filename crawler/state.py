"""
Crawl State - Durable record of what the index has acknowledged.

SQLite table keyed by (root, path). Rows are written only from reconciled,
acknowledged batch outcomes; nothing is recorded speculatively.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from .config import get_config, CrawlerConfig
from .models import CrawlStateEntry, StateUpdate


logger = logging.getLogger(__name__)


class CrawlState:
    """Per-root mapping of real path -> (checksum, last_modified, last_indexed)."""

    def __init__(self, config: CrawlerConfig | None = None, db_path: Optional[Path] = None):
        self.config = config or get_config()
        self._db_path = db_path or self.config.state_path
        self._conn: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._init_tables()
        return self._conn

    def _init_tables(self):
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS crawl_state (
                root TEXT NOT NULL,
                path TEXT NOT NULL,
                checksum TEXT,
                last_modified REAL NOT NULL,
                last_indexed REAL NOT NULL,
                PRIMARY KEY (root, path)
            );
        """)
        conn.commit()

    def load(self, root: str) -> Dict[str, CrawlStateEntry]:
        """All committed entries for a crawl root, keyed by real path."""
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT path, checksum, last_modified, last_indexed FROM crawl_state WHERE root = ?",
            (root,)
        )
        return {row["path"]: _to_entry(row) for row in cursor.fetchall()}

    def get(self, root: str, path: str) -> Optional[CrawlStateEntry]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT path, checksum, last_modified, last_indexed FROM crawl_state "
            "WHERE root = ? AND path = ?",
            (root, path)
        ).fetchone()
        return _to_entry(row) if row else None

    def count(self, root: Optional[str] = None) -> int:
        conn = self._get_connection()
        if root is None:
            return conn.execute("SELECT COUNT(*) FROM crawl_state").fetchone()[0]
        return conn.execute(
            "SELECT COUNT(*) FROM crawl_state WHERE root = ?", (root,)
        ).fetchone()[0]

    def commit(self, updates: Iterable[StateUpdate]) -> int:
        """
        Apply acknowledged updates in a single transaction.

        Returns:
            Number of updates applied
        """
        conn = self._get_connection()
        now = datetime.now().timestamp()
        applied = 0

        with conn:
            for update in updates:
                if update.remove:
                    conn.execute(
                        "DELETE FROM crawl_state WHERE root = ? AND path = ?",
                        (update.root, update.path)
                    )
                else:
                    conn.execute(
                        """
                        INSERT INTO crawl_state (root, path, checksum, last_modified, last_indexed)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(root, path) DO UPDATE SET
                            checksum = excluded.checksum,
                            last_modified = excluded.last_modified,
                            last_indexed = excluded.last_indexed
                        """,
                        (
                            update.root,
                            update.path,
                            update.checksum,
                            update.last_modified.timestamp(),
                            now,
                        )
                    )
                applied += 1

        return applied

    def close(self):
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None


def _to_entry(row: sqlite3.Row) -> CrawlStateEntry:
    return CrawlStateEntry(
        path=row["path"],
        checksum=row["checksum"],
        last_modified=datetime.fromtimestamp(row["last_modified"]),
        last_indexed=datetime.fromtimestamp(row["last_indexed"]),
    )
