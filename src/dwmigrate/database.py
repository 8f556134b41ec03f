"""SQLite staging database for the DocuWare migration.

Owns the ``upload`` table schema and the synchronous write path used by the
extraction step (``dwmigrate prepare``) and the read-only CLI commands. The
upload run itself goes through :class:`dwmigrate.upload.state.AsyncStagingStore`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from dwmigrate.models import StagingRecord

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- One row per source document candidate
CREATE TABLE IF NOT EXISTS upload (
    object_id TEXT PRIMARY KEY,
    destination_cabinet_id TEXT NOT NULL,
    source_path TEXT NOT NULL,
    index_fields_json TEXT NOT NULL DEFAULT '{}',

    -- 0 = pending; set once on successful upload
    remote_document_id INTEGER NOT NULL DEFAULT 0,
    uploaded_at TEXT DEFAULT NULL,

    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    updated_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),

    CHECK ((remote_document_id = 0) = (uploaded_at IS NULL))
);

CREATE INDEX IF NOT EXISTS idx_upload_remote_id ON upload(remote_document_id);

CREATE TRIGGER IF NOT EXISTS update_upload_timestamp
    AFTER UPDATE ON upload
    FOR EACH ROW
    WHEN OLD.updated_at = NEW.updated_at
    BEGIN
        UPDATE upload SET updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
        WHERE object_id = NEW.object_id;
    END;
"""

# Upload bookkeeping columns are never part of the conflict update: a row
# that already has a DocuWare ID keeps it across re-extraction.
UPSERT_SQL = """
INSERT INTO upload(object_id, destination_cabinet_id, source_path, index_fields_json)
VALUES (?, ?, ?, ?)
ON CONFLICT(object_id) DO UPDATE SET
    destination_cabinet_id = excluded.destination_cabinet_id,
    source_path = excluded.source_path,
    index_fields_json = excluded.index_fields_json
"""


def row_to_record(row: sqlite3.Row | dict) -> StagingRecord:
    """Build a :class:`StagingRecord` from an ``upload`` table row."""
    fields_json = row["index_fields_json"] or "{}"
    try:
        index_fields = json.loads(fields_json)
    except json.JSONDecodeError:
        logger.warning(
            "Malformed index_fields_json for %s, sending no extra fields",
            row["object_id"],
        )
        index_fields = {}
    return StagingRecord(
        object_id=row["object_id"],
        destination_cabinet_id=row["destination_cabinet_id"],
        source_path=row["source_path"],
        index_fields={str(k): "" if v is None else str(v) for k, v in index_fields.items()},
        remote_document_id=row["remote_document_id"] or 0,
        uploaded_at=row["uploaded_at"],
    )


class Database:
    """SQLite wrapper for the staging table.

    Usage:
        with Database("data/upload.db") as db:
            db.upsert_records(records)
            counts = db.get_status_counts()
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(
            self.db_path,
            autocommit=sqlite3.LEGACY_TRANSACTION_CONTROL,
        )
        self.conn.row_factory = sqlite3.Row
        self._setup_pragmas()
        self.ensure_schema()

    def _setup_pragmas(self) -> None:
        """Configure SQLite pragmas for performance and reliability."""
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")

        result = self.conn.execute("PRAGMA journal_mode").fetchone()[0]
        if result != "wal":
            logger.warning("WAL mode not enabled, got: %s", result)

    def ensure_schema(self) -> None:
        """Create the staging table, index, and trigger if they don't exist."""
        self.conn.executescript(SCHEMA_SQL)
        self.conn.execute("PRAGMA user_version = 1")

    def upsert_records(self, records: list[StagingRecord]) -> int:
        """Insert or refresh staging rows in a single transaction.

        New rows start pending. Existing rows get their cabinet, path and
        index fields refreshed; ``remote_document_id`` and ``uploaded_at``
        are left untouched. The whole batch rolls back on any error.

        Returns:
            Number of rows written.
        """
        if not records:
            return 0
        with self.conn:
            self.conn.executemany(
                UPSERT_SQL,
                [
                    (
                        r.object_id,
                        r.destination_cabinet_id,
                        r.source_path,
                        json.dumps(r.index_fields, ensure_ascii=False),
                    )
                    for r in records
                ],
            )
        logger.info("Staged %d records into %s", len(records), self.db_path)
        return len(records)

    def get_record(self, object_id: str) -> StagingRecord | None:
        row = self.conn.execute(
            "SELECT * FROM upload WHERE object_id = ?", (object_id,)
        ).fetchone()
        return row_to_record(row) if row else None

    def get_pending_records(self, limit: int = 10000) -> list[StagingRecord]:
        """Return pending rows ordered by ``object_id``."""
        rows = self.conn.execute(
            """SELECT * FROM upload
               WHERE remote_document_id = 0
               ORDER BY object_id
               LIMIT ?""",
            (limit,),
        ).fetchall()
        return [row_to_record(row) for row in rows]

    def get_status_counts(self) -> dict[str, int]:
        """Return ``{"pending": n, "uploaded": m}``."""
        row = self.conn.execute(
            """SELECT
                   SUM(CASE WHEN remote_document_id = 0 THEN 1 ELSE 0 END) AS pending,
                   SUM(CASE WHEN remote_document_id != 0 THEN 1 ELSE 0 END) AS uploaded
               FROM upload"""
        ).fetchone()
        return {"pending": row["pending"] or 0, "uploaded": row["uploaded"] or 0}

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
