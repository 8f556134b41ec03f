"""Async SQLite staging store for the upload run.

Wraps aiosqlite to give the orchestrator the four operations it needs:
``ensure_schema``, ``fetch_pending``, ``update_on_success`` and ``close``.

Each write commits immediately -- no transaction is held across an
``await`` on the network, so an interrupted run never loses a recorded
success and never leaves a row half-updated.
"""

from __future__ import annotations

import logging

import aiosqlite

from dwmigrate.database import SCHEMA_SQL, row_to_record
from dwmigrate.exceptions import FatalSetupFailure
from dwmigrate.models import StagingRecord

logger = logging.getLogger(__name__)


class AsyncStagingStore:
    """Async access to the ``upload`` staging table.

    Usage::

        async with AsyncStagingStore("data/upload.db") as store:
            pending = await store.fetch_pending()
            await store.update_on_success(pending[0].object_id, 555, now)
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open an aiosqlite connection with WAL mode.

        Raises:
            FatalSetupFailure: If the database cannot be opened.
        """
        try:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
        except aiosqlite.Error as exc:
            raise FatalSetupFailure(
                f"Could not open staging store {self.db_path}: {exc}"
            ) from exc
        logger.info("Connected to staging store %s", self.db_path)

    async def close(self) -> None:
        """Close the connection if open. Safe to call more than once."""
        if self._db is not None:
            db, self._db = self._db, None
            await db.close()
            logger.info("Staging store connection closed")

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    async def __aenter__(self) -> AsyncStagingStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Not connected -- use 'async with' or call connect()")
        return self._db

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create the staging table if it does not exist yet.

        Raises:
            FatalSetupFailure: If the schema cannot be applied, e.g. an
                existing ``upload`` table with different columns.
        """
        db = self._ensure_connected()
        try:
            await db.executescript(SCHEMA_SQL)
            await db.commit()
        except aiosqlite.Error as exc:
            raise FatalSetupFailure(
                f"Could not prepare staging schema in {self.db_path}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def fetch_pending(self) -> list[StagingRecord]:
        """Return every pending record ordered by ``object_id``.

        The stable ordering means a restarted run resumes at the first id
        that is still pending.

        Raises:
            FatalSetupFailure: If the staging table cannot be read.
        """
        db = self._ensure_connected()
        try:
            cursor = await db.execute(
                """SELECT object_id, destination_cabinet_id, source_path,
                          index_fields_json, remote_document_id, uploaded_at
                   FROM upload
                   WHERE remote_document_id = 0
                   ORDER BY object_id"""
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise FatalSetupFailure(
                f"Could not read pending records from {self.db_path}: {exc}"
            ) from exc
        return [row_to_record(row) for row in rows]

    async def update_on_success(
        self, object_id: str, remote_id: int, timestamp: str
    ) -> bool:
        """Record the DocuWare document ID and upload time in one update.

        Only a pending row is updated, so an ID, once written, is never
        overwritten.

        Returns:
            True if the row moved from pending to uploaded, False if the
            ``object_id`` is unknown or was already uploaded.

        Raises:
            ValueError: If *remote_id* is 0 (that value means "pending").
        """
        if remote_id == 0:
            raise ValueError("remote_id 0 is reserved for pending records")

        db = self._ensure_connected()
        cursor = await db.execute(
            """UPDATE upload
               SET remote_document_id = ?, uploaded_at = ?
               WHERE object_id = ? AND remote_document_id = 0""",
            (remote_id, timestamp, object_id),
        )
        await db.commit()

        if cursor.rowcount == 0:
            logger.warning(
                "Staging row %s not updated (unknown id or already uploaded)",
                object_id,
            )
            return False
        logger.debug("Recorded DocuWare ID %d for %s", remote_id, object_id)
        return True
