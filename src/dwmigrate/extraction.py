"""Source extraction: PostgreSQL object table -> SQLite staging table.

Runs the mapping query against the source store, drops rows whose content
path could not be resolved, and upserts the rest into the ``upload`` table
in one transaction. Rows that were already uploaded keep their DocuWare ID.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from dwmigrate.database import Database
from dwmigrate.models import SourceConfig, StagingRecord

logger = logging.getLogger(__name__)

INVALID_PATH = "Error"

# Parameters: email cabinet, document cabinet, docs prefix, d prefix,
# profile, created-since. Literal % signs are doubled for psycopg.
SOURCE_QUERY = """
SELECT
    COALESCE(obj_id, '') AS obj_id,
    CASE
        WHEN obj_content ILIKE '%%.msg' THEN %s
        ELSE %s
    END AS cabinet_id,

    REPLACE(REPLACE(REPLACE(c_x, '[', ''), '"', ''), ']', '') AS x,
    REPLACE(REPLACE(REPLACE(c_y, '[', ''), '"', ''), ']', '') AS y,

    CASE
        WHEN obj_content LIKE 'fs:docs%%' THEN REPLACE(obj_content, 'fs:docs/', %s)
        WHEN obj_content LIKE 'fs:d%%' THEN REPLACE(obj_content, 'fs:d/', %s)
        ELSE 'Error'
    END AS path

FROM {table}
WHERE obj_content IS NOT NULL
  AND obj_profile = %s
  AND obj_created >= %s
ORDER BY obj_id
"""

PROGRESS_EVERY = 100


@dataclass
class PrepareResult:
    """Counts from one extraction run."""

    fetched: int = 0
    staged: int = 0
    skipped: int = 0


def build_source_query(config: SourceConfig) -> tuple[sql.Composed, tuple[Any, ...]]:
    """Compose the source query and its parameters for *config*."""
    query = sql.SQL(SOURCE_QUERY).format(
        table=sql.Identifier(*config.source_table.split("."))
    )
    params = (
        config.email_cabinet_id,
        config.document_cabinet_id,
        config.docs_prefix,
        config.d_prefix,
        config.profile,
        config.created_since,
    )
    return query, params


def map_source_row(row: dict[str, Any]) -> StagingRecord | None:
    """Turn one source row into a staging record.

    Returns:
        ``None`` when the row has no object id or its path could not be
        mapped; such rows never reach the staging table.
    """
    object_id = (row.get("obj_id") or "").strip()
    path = row.get("path")
    if not object_id:
        logger.warning("Skipping source row without obj_id")
        return None
    if not path or path == INVALID_PATH:
        logger.warning("Skipping obj_id %s due to invalid path mapping", object_id)
        return None

    index_fields = {
        name: str(value)
        for name, value in (("X", row.get("x")), ("Y", row.get("y")))
        if value not in (None, "")
    }
    return StagingRecord(
        object_id=object_id,
        destination_cabinet_id=row["cabinet_id"],
        source_path=path,
        index_fields=index_fields,
    )


def fetch_source_rows(config: SourceConfig) -> list[dict[str, Any]]:
    """Run the mapping query against PostgreSQL and return all rows as dicts."""
    query, params = build_source_query(config)
    logger.info(
        "Connecting to PostgreSQL %s@%s:%d/%s",
        config.user,
        config.host,
        config.port,
        config.database,
    )
    with psycopg.connect(
        host=config.host,
        port=config.port,
        user=config.user,
        password=config.password,
        dbname=config.database,
        row_factory=dict_row,
    ) as conn:
        logger.info("Executing PostgreSQL query...")
        rows = conn.execute(query, params).fetchall()
    logger.info("Found %d records to process", len(rows))
    return rows


def stage_rows(rows: list[dict[str, Any]], db: Database) -> PrepareResult:
    """Map *rows* and upsert the valid ones into the staging table."""
    result = PrepareResult(fetched=len(rows))
    records: list[StagingRecord] = []
    for count, row in enumerate(rows, start=1):
        record = map_source_row(row)
        if record is None:
            result.skipped += 1
        else:
            records.append(record)
        if count % PROGRESS_EVERY == 0:
            logger.info("Processed %d/%d records...", count, len(rows))

    if records:
        result.staged = db.upsert_records(records)
    else:
        logger.info("No new records found in source DB. Nothing to write.")
    return result


def prepare_staging(config: SourceConfig, db_path: str | Path) -> PrepareResult:
    """Extract from the source store and fill the staging table at *db_path*."""
    rows = fetch_source_rows(config)
    with Database(db_path) as db:
        return stage_rows(rows, db)
