"""Local SQLite storage for question/answer records."""

import logging
import sqlite3
from pathlib import Path
from typing import Any

from site_knowledge.models import CONTENT_FIELDS, Record
from site_knowledge.utils import fuzzy_score

logger = logging.getLogger(__name__)


class RecordStore:
    """Durable table of records keyed by local id.

    Local ids come from an AUTOINCREMENT primary key, so they are never
    reused after a delete. A record may carry the id the remote store
    assigned to it; that column is unique when set.
    """

    # Columns a caller may write through insert/update
    WRITABLE_FIELDS = frozenset(CONTENT_FIELDS) | {"approved"}

    # Minimum fuzzy score for a record to count as a search hit
    MIN_SEARCH_SCORE = 0.5

    def __init__(self, db_path: str | Path) -> None:
        """Open (or create) the record database.

        Args:
            db_path: Path to the SQLite file, or ":memory:".
        """
        self.db_path = str(db_path)
        # Pulls scheduled in the background share this connection
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS records (
                local_id INTEGER PRIMARY KEY AUTOINCREMENT,
                site_name TEXT NOT NULL,
                category TEXT NOT NULL,
                subcategory TEXT NOT NULL,
                question TEXT NOT NULL,
                answer TEXT NOT NULL,
                additional_info TEXT,
                approved INTEGER NOT NULL DEFAULT 0,
                remote_id TEXT
            )
        """)
        self.conn.commit()
        self._migrate_schema()
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_records_remote_id ON records(remote_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_records_approved ON records(approved)
        """)
        self.conn.commit()

    def _migrate_schema(self) -> None:
        """Apply schema migrations for existing databases."""
        cursor = self.conn.cursor()
        cursor.execute("PRAGMA table_info(records)")
        columns = {row[1] for row in cursor.fetchall()}

        if "approved" not in columns:
            cursor.execute(
                "ALTER TABLE records ADD COLUMN approved INTEGER NOT NULL DEFAULT 0"
            )
            logger.info("Added approved column to records table")
        if "remote_id" not in columns:
            cursor.execute("ALTER TABLE records ADD COLUMN remote_id TEXT")
            logger.info("Added remote_id column to records table")
        self.conn.commit()

    def _writable(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Keep only writable fields, normalizing types for storage."""
        values: dict[str, Any] = {}
        for name, value in fields.items():
            if name not in self.WRITABLE_FIELDS:
                continue
            if name == "approved":
                values[name] = 1 if value else 0
            else:
                values[name] = "" if value is None else str(value)
        return values

    def list_all(self, approved: bool | None = None) -> list[Record]:
        """Return every record, oldest first.

        Args:
            approved: Optional approval filter.

        Returns:
            List of records.
        """
        cursor = self.conn.cursor()
        if approved is None:
            cursor.execute("SELECT * FROM records ORDER BY local_id")
        else:
            cursor.execute(
                "SELECT * FROM records WHERE approved = ? ORDER BY local_id",
                (1 if approved else 0,),
            )
        return [Record.from_row(row) for row in cursor.fetchall()]

    def get(self, local_id: int) -> Record | None:
        """Get a single record by local id.

        Args:
            local_id: The local record id.

        Returns:
            The record, or None if not found.
        """
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM records WHERE local_id = ?", (local_id,))
        row = cursor.fetchone()
        return Record.from_row(row) if row else None

    def get_by_remote_id(self, remote_id: str) -> Record | None:
        """Get a single record by the id the remote store assigned to it."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM records WHERE remote_id = ?", (remote_id,))
        row = cursor.fetchone()
        return Record.from_row(row) if row else None

    def insert(self, fields: dict[str, Any], remote_id: str | None = None) -> int:
        """Insert a new record.

        Args:
            fields: Content fields and approval flag; missing content fields
                are stored as empty strings.
            remote_id: Optional remote id to link the record to.

        Returns:
            The new local id.
        """
        values = {name: "" for name in CONTENT_FIELDS}
        values["approved"] = 0
        values.update(self._writable(fields))
        values["remote_id"] = remote_id

        columns = ", ".join(values.keys())
        placeholders = ", ".join("?" * len(values))
        cursor = self.conn.cursor()
        cursor.execute(
            f"INSERT INTO records ({columns}) VALUES ({placeholders})",
            list(values.values()),
        )
        self.conn.commit()
        return cursor.lastrowid

    def update_by_local_id(self, local_id: int, fields: dict[str, Any]) -> int:
        """Overwrite fields of an existing record.

        Args:
            local_id: The local record id.
            fields: Fields to write; unknown names are ignored.

        Returns:
            Number of rows changed (0 if not found or nothing to write).
        """
        values = self._writable(fields)
        if not values:
            return 0

        set_clause = ", ".join(f"{k} = ?" for k in values.keys())
        cursor = self.conn.cursor()
        cursor.execute(
            f"UPDATE records SET {set_clause} WHERE local_id = ?",
            list(values.values()) + [local_id],
        )
        self.conn.commit()
        return cursor.rowcount

    def attach_remote_id(self, local_id: int, remote_id: str) -> int:
        """Link a local record to its remote counterpart.

        Returns:
            Number of rows changed.
        """
        cursor = self.conn.cursor()
        cursor.execute(
            "UPDATE records SET remote_id = ? WHERE local_id = ?",
            (remote_id, local_id),
        )
        self.conn.commit()
        return cursor.rowcount

    def delete_by_local_id(self, local_id: int) -> int:
        """Physically delete a record.

        Returns:
            Number of rows deleted.
        """
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM records WHERE local_id = ?", (local_id,))
        self.conn.commit()
        return cursor.rowcount

    def set_approval(self, local_id: int, approved: bool) -> int:
        """Set the approval flag of a record.

        Returns:
            Number of rows changed.
        """
        return self.update_by_local_id(local_id, {"approved": approved})

    def search(
        self,
        query: str,
        approved: bool | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        """Fuzzy search over all content fields.

        An empty query returns every record matching the approval filter.
        Otherwise records are ranked by fuzzy score, best first.

        Args:
            query: Search text.
            approved: Optional approval filter.
            limit: Optional maximum number of results.

        Returns:
            Matching records.
        """
        records = self.list_all(approved=approved)
        if not query or not query.strip():
            return records[:limit] if limit else records

        scored = []
        for record in records:
            score = fuzzy_score(query, record.search_text())
            if score >= self.MIN_SEARCH_SCORE:
                scored.append((score, record))

        scored.sort(key=lambda pair: (-pair[0], pair[1].local_id))
        results = [record for _, record in scored]
        return results[:limit] if limit else results

    def count(self) -> int:
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM records")
        return cursor.fetchone()[0]

    def stats(self) -> dict[str, int]:
        """Count records by approval and link state."""
        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(approved), 0) AS approved,
                COALESCE(SUM(CASE WHEN remote_id IS NOT NULL THEN 1 ELSE 0 END), 0) AS linked
            FROM records
        """)
        row = cursor.fetchone()
        total = row["total"]
        return {
            "total": total,
            "approved": row["approved"],
            "unapproved": total - row["approved"],
            "linked": row["linked"],
            "unpublished": total - row["linked"],
        }

    def close(self) -> None:
        """Close the database connection."""
        if getattr(self, "conn", None):
            self.conn.close()
            self.conn = None  # Prevent double-close

    def __enter__(self) -> "RecordStore":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
