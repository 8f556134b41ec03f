"""Single-document upload to a DocuWare file cabinet.

One call of :meth:`DocumentUploader.upload` is one attempt:

  1. Read the source file fully into memory
  2. Build the DocuWare field list from the record's index fields
  3. ``POST {base}/FileCabinets/{cabinet}/Documents`` as multipart
     (JSON ``document`` part + binary ``file`` part)
  4. Map the response to an :class:`~dwmigrate.models.UploadOutcome`

Per-record failures are returned as outcomes, never raised. The caller
decides what to do with an expired session.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from dwmigrate.models import StagingRecord, UploadOutcome
from dwmigrate.upload.session import DocuWareSession

logger = logging.getLogger(__name__)

# Staging columns that must never be sent as DocuWare index fields
BOOKKEEPING_KEYS = frozenset(
    {
        "object_id",
        "destination_cabinet_id",
        "source_path",
        "remote_document_id",
        "uploaded_at",
    }
)

SOURCE_ID_FIELD = "object_id"


def _field(name: str, value: Any) -> dict[str, str]:
    return {
        "FieldName": name,
        "Item": "" if value is None else str(value),
        "ItemElementName": "String",
    }


def build_field_list(record: StagingRecord) -> list[dict[str, str]]:
    """Build the DocuWare ``Fields`` list for *record*.

    Keys matching a staging bookkeeping column (case-insensitive) are
    dropped; the source ``object_id`` is then appended last so it appears
    exactly once.
    """
    fields = [
        _field(key, value)
        for key, value in record.index_fields.items()
        if key.lower() not in BOOKKEEPING_KEYS
    ]
    fields.append(_field(SOURCE_ID_FIELD, record.object_id))
    return fields


def classify_status(status_code: int) -> UploadOutcome:
    """Map a non-2xx upload response status to an outcome."""
    if status_code == 401:
        return UploadOutcome.auth_expired()
    if status_code == 409:
        return UploadOutcome.skipped_duplicate()
    if status_code == 413:
        return UploadOutcome.rejected("too_large")
    if 400 <= status_code < 600:
        return UploadOutcome.rejected(f"http_{status_code}")
    return UploadOutcome.general_failure(f"unexpected HTTP {status_code}")


def _parse_document_id(response: httpx.Response) -> int | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    doc_id = body.get("Id")
    if isinstance(doc_id, bool):
        return None
    try:
        doc_id = int(doc_id)
    except (TypeError, ValueError, OverflowError):
        return None
    return doc_id or None


class DocumentUploader:
    """Uploads staging records through a shared :class:`DocuWareSession`.

    Args:
        session: The live session; its HTTP client carries the cookies.
        upload_timeout: Seconds allowed per upload request (large files).
    """

    def __init__(self, session: DocuWareSession, upload_timeout: float = 90.0) -> None:
        self._session = session
        self._upload_timeout = upload_timeout

    def upload_url(self, cabinet_id: str) -> str:
        return f"{self._session.base_url}/FileCabinets/{cabinet_id}/Documents"

    async def upload(self, record: StagingRecord) -> UploadOutcome:
        """Perform one upload attempt for *record*.

        Returns:
            ``success`` with the DocuWare ID, ``skipped_duplicate`` on 409,
            ``auth_expired`` on 401, ``rejected`` on a missing file or any
            other HTTP error status, ``general_failure`` otherwise.
        """
        path = Path(record.source_path)
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            logger.debug("Source file not found for %s: %s", record.object_id, path)
            return UploadOutcome.rejected("file_not_found")
        except OSError as exc:
            return UploadOutcome.general_failure(f"read error: {exc}")

        document = {"Fields": build_field_list(record)}
        files = {
            "document": (
                None,
                json.dumps(document, ensure_ascii=False).encode("utf-8"),
                "application/json",
            ),
            "file": (path.name, content, "application/octet-stream"),
        }

        try:
            response = await self._session.client.post(
                self.upload_url(record.destination_cabinet_id),
                files=files,
                headers={"Accept": "application/json"},
                timeout=self._upload_timeout,
            )
        except httpx.HTTPError as exc:
            logger.debug("Transport error uploading %s", record.object_id, exc_info=True)
            return UploadOutcome.general_failure(str(exc) or type(exc).__name__)

        if not response.is_success:
            return classify_status(response.status_code)

        doc_id = _parse_document_id(response)
        if doc_id is None:
            logger.error(
                "Upload of %s returned HTTP %d without a document Id",
                record.object_id,
                response.status_code,
            )
            return UploadOutcome.general_failure("missing_document_id")

        logger.debug("Uploaded %s -> DocuWare ID %d", record.object_id, doc_id)
        return UploadOutcome.success(doc_id)
