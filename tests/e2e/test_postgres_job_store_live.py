"""
Live Postgres job store smoke tests.

Requires:
  - Environment variable RUN_POSTGRES_TESTS=1
  - DATABASE_URL pointing at a Postgres instance the tests may create tables in.

Rows created here are left in `extraction_jobs`; they use unique ids.
"""

import os

import pytest

RUN_POSTGRES = os.environ.get("RUN_POSTGRES_TESTS") == "1"
DATABASE_URL = os.environ.get("DATABASE_URL")

if not RUN_POSTGRES:
    pytest.skip(
        "Set RUN_POSTGRES_TESTS=1 to run live Postgres tests", allow_module_level=True
    )

if not DATABASE_URL:
    pytest.skip(
        "DATABASE_URL is required for live Postgres tests", allow_module_level=True
    )

from imagex.application.extraction_service import ExtractionPipeline  # noqa: E402
from imagex.core.domain.extraction import JobStage, JobStatus, LogEntry, LogLevel  # noqa: E402
from imagex.infrastructure.db import connection as db  # noqa: E402
from imagex.infrastructure.db.job_store import PostgresJobStore  # noqa: E402


@pytest.fixture(scope="module")
def pg_store():
    db.DATABASE_URL = DATABASE_URL
    try:
        db.init_pool()
    except Exception as exc:  # pragma: no cover - live only
        pytest.skip(f"Could not init pool: {exc}")
    store = PostgresJobStore()
    store.ensure_table()
    yield store
    db.close_pool()


def test_record_lifecycle(pg_store):
    job = pg_store.create("live.pdf", 42)
    assert job.status == JobStatus.pending
    assert job.current_stage == JobStage.parsing

    pg_store.append_log(job.id, LogEntry.now(LogLevel.info, "first"))
    pg_store.append_log(job.id, LogEntry.now(LogLevel.warn, "second"))
    updated = pg_store.update(job.id, status="processing", progress=20, total_pages=3)

    assert updated.status == JobStatus.processing
    assert updated.total_pages == 3
    assert [entry.message for entry in updated.logs] == ["first", "second"]
    assert pg_store.get("00000000-0000-0000-0000-000000000000") is None


def test_pipeline_against_postgres(pg_store, fake_tools, uploaded_pdf, tmp_path):
    job = pg_store.create("live-pipeline.pdf", 42)
    ExtractionPipeline(
        pg_store,
        tools=fake_tools(pages=2, images=3).bundle(),
        output_root=tmp_path / "temp",
        archive_root=tmp_path / "artifacts",
    ).run(job.id, uploaded_pdf)

    done = pg_store.get(job.id)
    assert done.status == JobStatus.completed
    assert done.metadata.info.total_images == 3
    assert done.logs[-1].message == "Extraction completed successfully! Found 3 images."
