"""Data models and enums for the DocuWare migration pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum


class OutcomeKind(str, Enum):
    """Tag of a single upload attempt's result."""

    SUCCESS = "success"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    REJECTED = "rejected"
    AUTH_EXPIRED = "auth_expired"
    GENERAL_FAILURE = "general_failure"


class RecordResult(str, Enum):
    """Outcome tag shown on the per-record progress line."""

    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(slots=True)
class StagingRecord:
    """One row of the ``upload`` staging table.

    ``remote_document_id == 0`` is the only definition of "pending".
    ``uploaded_at`` is set together with ``remote_document_id`` and never
    changes afterwards.
    """

    object_id: str
    destination_cabinet_id: str
    source_path: str
    index_fields: dict[str, str] = field(default_factory=dict)
    remote_document_id: int = 0
    uploaded_at: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.remote_document_id == 0

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class UploadOutcome:
    """Tagged result of one upload attempt, returned by value.

    Use the named constructors rather than building instances directly::

        UploadOutcome.success(555)
        UploadOutcome.rejected("too_large")
    """

    kind: OutcomeKind
    remote_id: int | None = None
    reason: str | None = None

    @classmethod
    def success(cls, remote_id: int) -> UploadOutcome:
        return cls(OutcomeKind.SUCCESS, remote_id=remote_id)

    @classmethod
    def skipped_duplicate(cls) -> UploadOutcome:
        return cls(OutcomeKind.SKIPPED_DUPLICATE, reason="HTTP 409 Conflict")

    @classmethod
    def rejected(cls, reason: str) -> UploadOutcome:
        return cls(OutcomeKind.REJECTED, reason=reason)

    @classmethod
    def auth_expired(cls) -> UploadOutcome:
        return cls(OutcomeKind.AUTH_EXPIRED, reason="session_expired")

    @classmethod
    def general_failure(cls, reason: str) -> UploadOutcome:
        return cls(OutcomeKind.GENERAL_FAILURE, reason=reason)


@dataclass
class RunSummary:
    """Counts produced by one orchestrator run."""

    total: int = 0
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    not_attempted: int = 0
    relogins: int = 0
    aborted: bool = False

    def as_dict(self) -> dict[str, int | bool]:
        return asdict(self)


@dataclass
class MigrationConfig:
    """Configuration for the DocuWare upload run.

    Timeouts are in seconds. ``loop_pause_ms`` is the fixed delay inserted
    before each upload attempt.
    """

    base_url: str
    username: str
    organization: str
    password: str | None = None
    db_path: str = "data/upload.db"
    loop_pause_ms: int = 0
    login_timeout: float = 30.0
    probe_timeout: float = 15.0
    logoff_timeout: float = 10.0
    upload_timeout: float = 90.0
    verify_tls: bool = True


@dataclass
class SourceConfig:
    """Connection and mapping settings for the PostgreSQL source store."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str | None = None
    database: str = "postgres"
    created_since: str = "1970-01-01"
    docs_prefix: str = ""
    d_prefix: str = ""
    document_cabinet_id: str = ""
    email_cabinet_id: str = ""
    profile: str = "cq_doc_wagen"
    source_table: str = "objects"
