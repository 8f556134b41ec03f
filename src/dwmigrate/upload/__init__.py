"""Upload pipeline for the DocuWare Platform.

Public API
----------
.. autoclass:: DocuWareSession
.. autoclass:: DocumentUploader
.. autoclass:: AsyncStagingStore
.. autoclass:: FixedDelayRateLimiter
.. autoclass:: UploadOrchestrator
.. autoclass:: UploadProgressReporter
"""

from dwmigrate.upload.client import DocumentUploader, build_field_list
from dwmigrate.upload.fsm import RunLifecycleSM, create_run_fsm
from dwmigrate.upload.orchestrator import UploadOrchestrator
from dwmigrate.upload.progress import UploadProgressReporter
from dwmigrate.upload.rate_limiter import FixedDelayRateLimiter
from dwmigrate.upload.session import DocuWareSession
from dwmigrate.upload.state import AsyncStagingStore

__all__ = [
    "AsyncStagingStore",
    "DocuWareSession",
    "DocumentUploader",
    "FixedDelayRateLimiter",
    "RunLifecycleSM",
    "UploadOrchestrator",
    "UploadProgressReporter",
    "build_field_list",
    "create_run_fsm",
]
