"""Document uploader tests.

Groups:
  - Field list construction (bookkeeping keys, object_id exactly once)
  - Status classification
  - Single upload attempts against the fake server
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from dwmigrate.models import OutcomeKind, StagingRecord, UploadOutcome
from dwmigrate.upload.client import DocumentUploader, build_field_list, classify_status
from dwmigrate.upload.session import DocuWareSession


def _document_fields(request: httpx.Request) -> list[dict]:
    """Extract the JSON ``Fields`` list from a multipart upload request."""
    body = request.read()
    start = body.index(b'{"Fields"')
    end = body.index(b"\r\n--", start)
    return json.loads(body[start:end])["Fields"]


def _record(path: Path | str, **fields: str) -> StagingRecord:
    return StagingRecord(
        object_id="A1",
        destination_cabinet_id="C",
        source_path=str(path),
        index_fields=fields,
    )


@pytest.fixture
async def uploader(session: DocuWareSession) -> DocumentUploader:
    await session.login()
    return DocumentUploader(session)


# ======================================================================
# Field list
# ======================================================================


class TestBuildFieldList:
    def test_index_fields_then_object_id(self):
        fields = build_field_list(_record("/x.pdf", Customer="Acme", Year="2024"))
        assert fields == [
            {"FieldName": "Customer", "Item": "Acme", "ItemElementName": "String"},
            {"FieldName": "Year", "Item": "2024", "ItemElementName": "String"},
            {"FieldName": "object_id", "Item": "A1", "ItemElementName": "String"},
        ]

    def test_bookkeeping_keys_dropped_case_insensitively(self):
        """Staging columns never become DocuWare fields, whatever their case."""
        record = _record(
            "/x.pdf",
            Customer="Acme",
            OBJECT_ID="spoofed",
            Source_Path="/etc/passwd",
            remote_document_id="9",
            Uploaded_At="never",
            destination_cabinet_id="other",
        )
        names = [f["FieldName"] for f in build_field_list(record)]
        assert names == ["Customer", "object_id"]

    def test_object_id_appears_exactly_once(self):
        fields = build_field_list(_record("/x.pdf", object_id="dup"))
        ids = [f for f in fields if f["FieldName"].lower() == "object_id"]
        assert ids == [{"FieldName": "object_id", "Item": "A1", "ItemElementName": "String"}]

    def test_no_index_fields(self):
        assert [f["FieldName"] for f in build_field_list(_record("/x.pdf"))] == ["object_id"]


# ======================================================================
# Status classification
# ======================================================================


class TestClassifyStatus:
    @pytest.mark.parametrize(
        "status, expected",
        [
            (401, UploadOutcome.auth_expired()),
            (409, UploadOutcome.skipped_duplicate()),
            (413, UploadOutcome.rejected("too_large")),
            (400, UploadOutcome.rejected("http_400")),
            (500, UploadOutcome.rejected("http_500")),
        ],
    )
    def test_mapping(self, status, expected):
        assert classify_status(status) == expected

    def test_non_error_status_is_general_failure(self):
        assert classify_status(304).kind is OutcomeKind.GENERAL_FAILURE


# ======================================================================
# Upload attempts
# ======================================================================


class TestUpload:
    async def test_success_returns_document_id(self, uploader, fake_docuware, source_files):
        fake_docuware.upload_responses.append((200, {"Id": 555}))

        outcome = await uploader.upload(_record(source_files["a.pdf"], Customer="Acme"))

        assert outcome == UploadOutcome.success(555)

    async def test_request_shape(self, uploader, fake_docuware, source_files):
        """POST to the cabinet's Documents endpoint with a JSON part and a file part."""
        await uploader.upload(_record(source_files["a.pdf"], Customer="Acme"))

        request = fake_docuware.upload_requests[0]
        assert request.url.path == "/DocuWare/Platform/FileCabinets/C/Documents"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert request.headers["Cookie"].startswith(".DWPLATFORMAUTH=")
        body = request.read()
        assert b'name="document"' in body
        assert b'name="file"; filename="a.pdf"' in body
        assert b"%PDF-1.4 test content a.pdf" in body
        assert _document_fields(request) == [
            {"FieldName": "Customer", "Item": "Acme", "ItemElementName": "String"},
            {"FieldName": "object_id", "Item": "A1", "ItemElementName": "String"},
        ]

    async def test_conflict_is_skipped_duplicate(self, uploader, fake_docuware, source_files):
        fake_docuware.upload_responses.append((409, None))
        outcome = await uploader.upload(_record(source_files["a.pdf"]))
        assert outcome.kind is OutcomeKind.SKIPPED_DUPLICATE

    async def test_unauthorized_is_auth_expired(self, uploader, fake_docuware, source_files):
        fake_docuware.upload_responses.append((401, None))
        outcome = await uploader.upload(_record(source_files["a.pdf"]))
        assert outcome.kind is OutcomeKind.AUTH_EXPIRED

    async def test_payload_too_large(self, uploader, fake_docuware, source_files):
        fake_docuware.upload_responses.append((413, None))
        outcome = await uploader.upload(_record(source_files["a.pdf"]))
        assert outcome == UploadOutcome.rejected("too_large")

    async def test_server_error_is_rejected(self, uploader, fake_docuware, source_files):
        fake_docuware.upload_responses.append((500, {"Message": "internal"}))
        outcome = await uploader.upload(_record(source_files["a.pdf"]))
        assert outcome == UploadOutcome.rejected("http_500")

    async def test_missing_file_is_rejected_without_request(
        self, uploader, fake_docuware, tmp_path
    ):
        """No network call is made for a file that does not exist."""
        outcome = await uploader.upload(_record(tmp_path / "gone.pdf"))

        assert outcome == UploadOutcome.rejected("file_not_found")
        assert fake_docuware.upload_calls == 0

    @pytest.mark.parametrize("body", [{}, {"Id": 0}, {"Id": None}, {"Id": "abc"}, {"Id": True}])
    async def test_success_without_id_is_general_failure(
        self, uploader, fake_docuware, source_files, body
    ):
        fake_docuware.upload_responses.append((200, body))
        outcome = await uploader.upload(_record(source_files["a.pdf"]))
        assert outcome == UploadOutcome.general_failure("missing_document_id")

    async def test_out_of_range_id_is_general_failure(
        self, uploader, fake_docuware, source_files
    ):
        """A JSON number too large for an integer never escapes as an exception."""
        fake_docuware.upload_responses.append((200, b'{"Id": 1e400}'))
        outcome = await uploader.upload(_record(source_files["a.pdf"]))
        assert outcome == UploadOutcome.general_failure("missing_document_id")

    async def test_numeric_string_id_accepted(self, uploader, fake_docuware, source_files):
        fake_docuware.upload_responses.append((201, {"Id": "777"}))
        outcome = await uploader.upload(_record(source_files["a.pdf"]))
        assert outcome == UploadOutcome.success(777)

    async def test_non_json_success_body(self, uploader, fake_docuware, source_files):
        fake_docuware.upload_responses.append((200, None))
        outcome = await uploader.upload(_record(source_files["a.pdf"]))
        assert outcome.reason == "missing_document_id"

    async def test_transport_error_is_general_failure(self, source_files):
        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        async with DocuWareSession(
            "https://dw.example.com/DocuWare/Platform",
            "admin",
            "secret",
            "Acme",
            transport=httpx.MockTransport(timeout),
        ) as s:
            outcome = await DocumentUploader(s).upload(_record(source_files["a.pdf"]))

        assert outcome == UploadOutcome.general_failure("read timed out")

    async def test_upload_url(self, session):
        uploader = DocumentUploader(session)
        assert uploader.upload_url("abc-123") == (
            "https://dw.example.com/DocuWare/Platform/FileCabinets/abc-123/Documents"
        )
