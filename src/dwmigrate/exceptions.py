"""Exception hierarchy for the migration pipeline.

Only setup-level failures are exceptions. Per-record failures (expired
session, duplicate, rejected upload, transport error) travel as
:class:`~dwmigrate.models.UploadOutcome` values instead.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base class for all dwmigrate errors."""


class ConfigError(MigrationError):
    """Raised when required configuration is missing or invalid."""


class AuthFailure(MigrationError):
    """Raised when the DocuWare credentials are rejected."""


class InitialAuthenticationError(AuthFailure):
    """Raised when the first login of a run fails before any record is touched."""


class FatalSetupFailure(MigrationError):
    """Raised when the staging store cannot be opened or prepared."""
