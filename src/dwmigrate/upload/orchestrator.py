"""Upload orchestrator for the DocuWare migration.

Composes the session, uploader, staging store and rate limiter into the
sequential upload engine:

* Logs in once before touching any record (a failed first login aborts the run)
* Walks pending staging records in ``object_id`` order, one at a time
* Persists each success before the next record is started
* Re-authenticates once per record on session expiry, then retries it once
* Always logs off and closes the staging store, however the loop ended
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import aiosqlite

from dwmigrate.exceptions import InitialAuthenticationError
from dwmigrate.models import (
    OutcomeKind,
    RecordResult,
    RunSummary,
    StagingRecord,
    UploadOutcome,
)
from dwmigrate.upload.client import DocumentUploader
from dwmigrate.upload.fsm import create_run_fsm
from dwmigrate.upload.progress import UploadProgressReporter
from dwmigrate.upload.rate_limiter import FixedDelayRateLimiter
from dwmigrate.upload.session import DocuWareSession
from dwmigrate.upload.state import AsyncStagingStore

logger = logging.getLogger(__name__)

RETRY_FAILED_REASON = "session_expired_retry_failed"
STAGING_WRITE_FAILED_REASON = "staging_write_failed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class UploadOrchestrator:
    """Main upload engine driving one run over the staging table.

    Usage::

        orchestrator = UploadOrchestrator(session, uploader, store, rate_limiter)
        summary = await orchestrator.run()

    The orchestrator takes ownership of *store*: it connects it if needed
    and always closes it at the end of :meth:`run`.

    Args:
        session: DocuWare session used for login, relogin and logoff.
        uploader: Performs single upload attempts through *session*.
        store: Async staging store.
        rate_limiter: Fixed delay applied before each record.
        progress: Optional per-record reporter (omit for headless mode).
    """

    def __init__(
        self,
        session: DocuWareSession,
        uploader: DocumentUploader,
        store: AsyncStagingStore,
        rate_limiter: FixedDelayRateLimiter,
        progress: UploadProgressReporter | None = None,
    ) -> None:
        self._session = session
        self._uploader = uploader
        self._store = store
        self._rate_limiter = rate_limiter
        self._progress = progress

        self._fsm = create_run_fsm()
        self._summary = RunSummary()

    @property
    def state(self) -> str:
        """Current lifecycle state (``idle`` ... ``finished``)."""
        return self._fsm.current_state_value

    @property
    def summary(self) -> RunSummary:
        return self._summary

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self) -> RunSummary:
        """Execute one upload run.

        1. Log in (abort with :class:`InitialAuthenticationError` on failure)
        2. Open the staging store and fetch pending records
        3. Upload each record sequentially
        4. Log off and close the store

        Returns:
            The run summary. ``aborted`` is set when a relogin failed.

        Raises:
            InitialAuthenticationError: The first login failed.
            FatalSetupFailure: The staging store could not be opened.
        """
        self._fsm.start_run()
        try:
            if not await self._session.login():
                self._fsm.login_failed()
                raise InitialAuthenticationError(
                    "Initial DocuWare login failed; no records were processed"
                )
            self._fsm.login_succeeded()

            if not self._store.is_connected:
                await self._store.connect()
                await self._store.ensure_schema()

            pending = await self._store.fetch_pending()
            self._summary.total = len(pending)
            logger.info("Found %d records pending upload", len(pending))

            if pending:
                if self._progress is not None:
                    self._progress.start(len(pending))
                await self._process_records(pending)
        finally:
            await self._drain()

        return self._summary

    # ------------------------------------------------------------------
    # Record loop
    # ------------------------------------------------------------------

    async def _process_records(self, pending: list[StagingRecord]) -> None:
        total = len(pending)
        for index, record in enumerate(pending, start=1):
            await self._rate_limiter.wait_if_needed()
            if self._progress is not None:
                self._progress.record_started(index, record.object_id)

            self._summary.attempted += 1
            outcome = await self._upload_with_relogin(record)
            if outcome is None:
                remaining = total - index
                self._summary.failed += 1
                self._summary.not_attempted = remaining
                self._summary.aborted = True
                logger.error(
                    "Re-login failed; aborting run with %d records not attempted",
                    remaining,
                )
                if self._progress is not None:
                    self._progress.relogin_failed(remaining)
                return

            await self._handle_outcome(record, outcome)

    async def _upload_with_relogin(self, record: StagingRecord) -> UploadOutcome | None:
        """Upload *record*, re-authenticating at most once on session expiry.

        Returns:
            The final outcome, or ``None`` when the relogin itself failed
            and the run must stop.
        """
        outcome = await self._uploader.upload(record)
        if outcome.kind is not OutcomeKind.AUTH_EXPIRED:
            return outcome

        logger.warning("Session expired while uploading %s, re-authenticating", record.object_id)
        if self._progress is not None:
            self._progress.session_expired(record.object_id)

        self._summary.relogins += 1
        if not await self._session.login():
            return None

        if self._progress is not None:
            self._progress.relogin_succeeded()

        outcome = await self._uploader.upload(record)
        if outcome.kind is OutcomeKind.AUTH_EXPIRED:
            logger.error(
                "Session expired again for %s after re-login; giving up on this record",
                record.object_id,
            )
            return UploadOutcome.rejected(RETRY_FAILED_REASON)
        return outcome

    async def _handle_outcome(self, record: StagingRecord, outcome: UploadOutcome) -> None:
        """Persist a success or log a non-success; never mutates on failure."""
        if outcome.kind is OutcomeKind.SUCCESS:
            try:
                await self._store.update_on_success(
                    record.object_id, outcome.remote_id, _now_iso()
                )
            except aiosqlite.Error:
                # Uploaded but not recorded; the row stays pending
                self._summary.failed += 1
                logger.exception(
                    "Uploaded %s as DocuWare ID %d but could not record it",
                    record.object_id,
                    outcome.remote_id,
                )
                self._report(RecordResult.FAILED, STAGING_WRITE_FAILED_REASON)
                return
            self._summary.succeeded += 1
            logger.info("Uploaded %s -> DocuWare ID %d", record.object_id, outcome.remote_id)
            self._report(RecordResult.SUCCESS, f"ID: {outcome.remote_id}")
            return

        if outcome.kind is OutcomeKind.SKIPPED_DUPLICATE:
            self._summary.skipped += 1
            logger.info("Skipped %s: duplicate/conflict", record.object_id)
            self._report(RecordResult.SKIPPED, "Duplicate/Conflict")
            return

        self._summary.failed += 1
        reason = outcome.reason or "Unknown failure"
        if reason == "file_not_found":
            logger.info("Failed %s: %s (%s)", record.object_id, reason, record.source_path)
        else:
            logger.error("Failed %s: %s [%s]", record.object_id, reason, outcome.kind.value)
        self._report(RecordResult.FAILED, reason)

    def _report(self, result: RecordResult, detail: str) -> None:
        if self._progress is not None:
            self._progress.record_finished(result, detail)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        """Log off and close the store; each step runs even if the other fails."""
        if self.state == "running":
            self._fsm.begin_drain()

        try:
            await self._session.logoff()
        except Exception:
            logger.exception("Unexpected error during DocuWare logoff")

        try:
            await self._store.close()
        except Exception:
            logger.exception("Error closing staging store")

        if self.state == "draining":
            self._fsm.complete()

        logger.info(
            "Upload process finished: %d attempted, %d succeeded, %d skipped, "
            "%d failed, %d not attempted of %d pending",
            self._summary.attempted,
            self._summary.succeeded,
            self._summary.skipped,
            self._summary.failed,
            self._summary.not_attempted,
            self._summary.total,
        )
