"""Source extraction tests: row mapping, staging writes, query composition.

PostgreSQL itself is mocked; the staging side uses a real SQLite file.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from psycopg import sql

from dwmigrate.database import Database
from dwmigrate.extraction import (
    build_source_query,
    map_source_row,
    prepare_staging,
    stage_rows,
)
from dwmigrate.models import SourceConfig


def _row(obj_id="000123", cabinet="doc-cab", path="/mnt/docs/a.pdf", x="Acme", y="2024"):
    return {"obj_id": obj_id, "cabinet_id": cabinet, "path": path, "x": x, "y": y}


def _source_config(**overrides) -> SourceConfig:
    values = {
        "document_cabinet_id": "doc-cab",
        "email_cabinet_id": "mail-cab",
        "docs_prefix": "/mnt/docs/",
        "d_prefix": "/mnt/d/",
        "created_since": "2024-01-01",
    }
    values.update(overrides)
    return SourceConfig(**values)


# ======================================================================
# Row mapping
# ======================================================================


class TestMapSourceRow:
    def test_valid_row(self):
        record = map_source_row(_row())
        assert record.object_id == "000123"
        assert record.destination_cabinet_id == "doc-cab"
        assert record.source_path == "/mnt/docs/a.pdf"
        assert record.index_fields == {"X": "Acme", "Y": "2024"}
        assert record.is_pending

    def test_invalid_path_skipped(self):
        """The query marks unmappable content paths with 'Error'."""
        assert map_source_row(_row(path="Error")) is None

    def test_missing_object_id_skipped(self):
        assert map_source_row(_row(obj_id="")) is None

    def test_empty_index_values_dropped(self):
        record = map_source_row(_row(x="", y=None))
        assert record.index_fields == {}


# ======================================================================
# Staging writes
# ======================================================================


class TestStageRows:
    def test_counts_and_rows(self, tmp_db: Database):
        rows = [_row("A1"), _row("A2", path="Error"), _row("A3")]

        result = stage_rows(rows, tmp_db)

        assert (result.fetched, result.staged, result.skipped) == (3, 2, 1)
        assert [r.object_id for r in tmp_db.get_pending_records()] == ["A1", "A3"]

    def test_restaging_keeps_uploaded_ids(self, tmp_db: Database):
        stage_rows([_row("A1")], tmp_db)
        tmp_db.conn.execute(
            "UPDATE upload SET remote_document_id = 555, uploaded_at = 'now' WHERE object_id = 'A1'"
        )
        tmp_db.conn.commit()

        stage_rows([_row("A1", path="/mnt/d/moved.pdf")], tmp_db)

        record = tmp_db.get_record("A1")
        assert record.remote_document_id == 555
        assert record.source_path == "/mnt/d/moved.pdf"

    def test_nothing_to_stage(self, tmp_db: Database):
        result = stage_rows([_row(path="Error")], tmp_db)
        assert result.staged == 0
        assert tmp_db.get_status_counts() == {"pending": 0, "uploaded": 0}


# ======================================================================
# Query composition
# ======================================================================


class TestBuildSourceQuery:
    def test_parameters_in_placeholder_order(self):
        query, params = build_source_query(_source_config())

        assert isinstance(query, sql.Composed)
        assert params == (
            "mail-cab",
            "doc-cab",
            "/mnt/docs/",
            "/mnt/d/",
            "cq_doc_wagen",
            "2024-01-01",
        )

    def test_schema_qualified_table(self):
        query, _ = build_source_query(_source_config(source_table="archive.objects"))
        identifiers = [part for part in query if isinstance(part, sql.Identifier)]
        assert identifiers[0] == sql.Identifier("archive", "objects")


# ======================================================================
# Full prepare (PostgreSQL mocked)
# ======================================================================


class TestPrepareStaging:
    def test_prepare_writes_staging_file(self, tmp_path):
        conn = MagicMock()
        conn.__enter__.return_value = conn
        conn.execute.return_value.fetchall.return_value = [_row("A1"), _row("A2")]
        db_path = tmp_path / "data" / "upload.db"

        with patch("dwmigrate.extraction.psycopg.connect", return_value=conn) as connect:
            result = prepare_staging(_source_config(password="pw"), db_path)

        assert result.staged == 2
        assert connect.call_args.kwargs["password"] == "pw"
        with Database(db_path) as db:
            assert db.get_status_counts() == {"pending": 2, "uploaded": 0}
