"""DocuWare migration: stage source documents and upload them to DocuWare."""

__version__ = "0.1.0"

from dwmigrate.models import (
    MigrationConfig,
    OutcomeKind,
    RecordResult,
    RunSummary,
    StagingRecord,
    UploadOutcome,
)

__all__ = [
    "MigrationConfig",
    "OutcomeKind",
    "RecordResult",
    "RunSummary",
    "StagingRecord",
    "UploadOutcome",
    "__version__",
]
