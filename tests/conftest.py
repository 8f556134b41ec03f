"""Shared pytest fixtures for the DocuWare migration tests.

Provides a seeded temporary staging database, an async staging store, and
an in-process fake of the DocuWare Platform API served through
``httpx.MockTransport`` -- no test touches the network.
"""

from __future__ import annotations

import sqlite3
from collections import deque
from pathlib import Path

import httpx
import pytest

from dwmigrate.database import Database
from dwmigrate.models import StagingRecord
from dwmigrate.upload.session import DocuWareSession
from dwmigrate.upload.state import AsyncStagingStore

BASE_URL = "https://dw.example.com/DocuWare/Platform"


class FakeDocuWare:
    """Minimal DocuWare Platform stand-in.

    * ``login_statuses`` -- status per logon call (last value repeats)
    * ``probe_status`` -- status of ``GET /FileCabinets``
    * ``upload_responses`` -- queue of ``(status, body)`` per upload call, the
      body a dict (JSON), raw bytes, or None;
      when empty, uploads succeed with increasing IDs starting at 1000
    * ``logoff_status`` -- status of ``GET /Account/Logoff``
    """

    def __init__(self) -> None:
        self.login_statuses: list[int] = [200]
        self.probe_status = 200
        self.logoff_status = 200
        self.upload_responses: deque[tuple[int, dict | bytes | None]] = deque()
        self.requests: list[httpx.Request] = []
        self.login_calls = 0
        self.logoff_calls = 0
        self.upload_calls = 0
        self._next_id = 1000

    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/Account/Logon") and request.method == "POST":
            return self._logon()
        if path.endswith("/Account/Logoff"):
            self.logoff_calls += 1
            return httpx.Response(self.logoff_status, text="<Logoff/>")
        if path.endswith("/FileCabinets") and request.method == "GET":
            return httpx.Response(self.probe_status, json={"FileCabinet": []})
        if path.endswith("/Documents") and request.method == "POST":
            return self._upload()
        return httpx.Response(404)

    def _logon(self) -> httpx.Response:
        index = min(self.login_calls, len(self.login_statuses) - 1)
        status = self.login_statuses[index]
        self.login_calls += 1
        if status == 200:
            return httpx.Response(
                200,
                text="<Organization/>",
                headers={"Set-Cookie": ".DWPLATFORMAUTH=token123; Path=/"},
            )
        return httpx.Response(status, text="<Error/>")

    def _upload(self) -> httpx.Response:
        self.upload_calls += 1
        if self.upload_responses:
            status, body = self.upload_responses.popleft()
            if body is None:
                return httpx.Response(status)
            if isinstance(body, bytes):
                return httpx.Response(
                    status, content=body, headers={"Content-Type": "application/json"}
                )
            return httpx.Response(status, json=body)
        self._next_id += 1
        return httpx.Response(200, json={"Id": self._next_id})

    # ------------------------------------------------------------------

    @property
    def upload_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/Documents")]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_docuware() -> FakeDocuWare:
    return FakeDocuWare()


@pytest.fixture
async def session(fake_docuware: FakeDocuWare):
    """A DocuWareSession wired to the fake server."""
    s = DocuWareSession(
        BASE_URL,
        "admin",
        "secret",
        "Acme Corp",
        transport=fake_docuware.transport(),
    )
    yield s
    await s.aclose()


@pytest.fixture
def source_files(tmp_path: Path) -> dict[str, Path]:
    """Three small source documents on disk."""
    docs = tmp_path / "docs"
    docs.mkdir()
    paths = {}
    for name in ("a.pdf", "b.pdf", "c.pdf"):
        path = docs / name
        path.write_bytes(b"%PDF-1.4 test content " + name.encode())
        paths[name] = path
    return paths


@pytest.fixture
def staging_db_path(tmp_path: Path, source_files: dict[str, Path]) -> Path:
    """Staging database with three pending records (A1, A2, A3) and one uploaded (A0)."""
    db_path = tmp_path / "upload.db"
    with Database(db_path) as db:
        db.upsert_records(
            [
                StagingRecord("A1", "C", str(source_files["a.pdf"]), {"Customer": "Acme"}),
                StagingRecord("A2", "C", str(source_files["b.pdf"]), {"Customer": "Globex"}),
                StagingRecord("A3", "C", str(source_files["c.pdf"]), {}),
                StagingRecord("A0", "C", str(source_files["a.pdf"]), {}),
            ]
        )
        db.conn.execute(
            "UPDATE upload SET remote_document_id = 42, uploaded_at = ? WHERE object_id = 'A0'",
            ("2026-01-01T00:00:00.000+00:00",),
        )
        db.conn.commit()
    return db_path


@pytest.fixture
async def staging_store(staging_db_path: Path):
    """Connected AsyncStagingStore over the seeded staging database."""
    store = AsyncStagingStore(str(staging_db_path))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def tmp_db(tmp_path: Path) -> Database:
    """Empty staging database (file-based for WAL support)."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def read_row(staging_db_path: Path):
    """Read one staging row with a fresh synchronous connection."""

    def _read(object_id: str) -> StagingRecord | None:
        with Database(staging_db_path) as db:
            return db.get_record(object_id)

    return _read


@pytest.fixture
def legacy_db_path(tmp_path: Path) -> Path:
    """Staging file in the older ``obj_id`` / ``docuware_id`` layout."""
    db_path = tmp_path / "legacy.db"
    conn = sqlite3.connect(db_path)
    conn.execute(
        """CREATE TABLE upload (
               obj_id TEXT PRIMARY KEY,
               archive_guid TEXT,
               path TEXT,
               docuware_id INTEGER DEFAULT 0,
               docuware_timestamp TEXT
           )"""
    )
    conn.execute(
        "INSERT INTO upload (obj_id, archive_guid, path) VALUES ('A1', 'C', '/docs/a.pdf')"
    )
    conn.commit()
    conn.close()
    return db_path
