"""
Job Store: key-value repository of extraction job records.

Two implementations share the `JobStore` protocol: an in-process store with
per-record locking (default) and a Postgres-backed store for deployments
where the pipeline runs in a separate worker process.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol

from psycopg.types.json import Jsonb

from imagex.core.domain.extraction import (
    ExtractionJob,
    ExtractionMetadata,
    JobStage,
    JobStatus,
    LogEntry,
)
from imagex.infrastructure.db import connection as db

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    def create(self, filename: str, file_size: int) -> ExtractionJob: ...

    def get(self, job_id: str) -> Optional[ExtractionJob]: ...

    def update(self, job_id: str, **fields: Any) -> Optional[ExtractionJob]: ...

    def append_log(self, job_id: str, entry: LogEntry) -> Optional[ExtractionJob]: ...

    def list(self) -> List[ExtractionJob]: ...


def _clean_fields(job_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in fields.items():
        if key not in ExtractionJob.UPDATABLE_FIELDS:
            logger.debug("Ignoring non-updatable field %s for job %s", key, job_id)
            continue
        if key == "status" and value is not None:
            value = JobStatus(value)
        elif key == "current_stage" and value is not None:
            value = JobStage(value)
        cleaned[key] = value
    return cleaned


def _snapshot(job: ExtractionJob) -> ExtractionJob:
    return replace(job, logs=list(job.logs))


class InMemoryJobStore:
    """
    Process-local store. Each record has its own lock; the registry lock only
    guards membership of the dictionaries and is never held while a record
    lock is waited on.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, ExtractionJob] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, job_id: str) -> Optional[threading.Lock]:
        with self._registry_lock:
            return self._locks.get(job_id)

    def create(self, filename: str, file_size: int) -> ExtractionJob:
        job = ExtractionJob(id=str(uuid.uuid4()), filename=filename, file_size=file_size)
        with self._registry_lock:
            self._jobs[job.id] = job
            self._locks[job.id] = threading.Lock()
        return _snapshot(job)

    def get(self, job_id: str) -> Optional[ExtractionJob]:
        lock = self._lock_for(job_id)
        if lock is None:
            return None
        with lock:
            return _snapshot(self._jobs[job_id])

    def update(self, job_id: str, **fields: Any) -> Optional[ExtractionJob]:
        lock = self._lock_for(job_id)
        if lock is None:
            return None
        changes = _clean_fields(job_id, fields)
        with lock:
            updated = replace(self._jobs[job_id], **changes)
            self._jobs[job_id] = updated
            return _snapshot(updated)

    def append_log(self, job_id: str, entry: LogEntry) -> Optional[ExtractionJob]:
        lock = self._lock_for(job_id)
        if lock is None:
            return None
        with lock:
            job = self._jobs[job_id]
            updated = replace(job, logs=[*job.logs, entry])
            self._jobs[job_id] = updated
            return _snapshot(updated)

    def list(self) -> List[ExtractionJob]:
        with self._registry_lock:
            job_ids = list(self._jobs)
        jobs = [self.get(job_id) for job_id in job_ids]
        return [job for job in jobs if job is not None]


TABLE_DDL = """
CREATE TABLE IF NOT EXISTS extraction_jobs (
    job_id TEXT PRIMARY KEY,
    filename TEXT NOT NULL,
    file_size BIGINT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    progress INTEGER NOT NULL DEFAULT 0,
    current_stage TEXT DEFAULT 'parsing',
    total_pages INTEGER,
    pages_processed INTEGER NOT NULL DEFAULT 0,
    images_found INTEGER NOT NULL DEFAULT 0,
    total_image_size BIGINT NOT NULL DEFAULT 0,
    logs JSONB NOT NULL DEFAULT '[]'::jsonb,
    metadata JSONB,
    zip_path TEXT,
    json_path TEXT,
    started_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    completed_at TIMESTAMPTZ,
    error_message TEXT
);
CREATE INDEX IF NOT EXISTS idx_extraction_jobs_status ON extraction_jobs(status);
"""

COLUMNS = (
    "job_id, filename, file_size, status, progress, current_stage, total_pages, "
    "pages_processed, images_found, total_image_size, logs, metadata, zip_path, "
    "json_path, started_at, completed_at, error_message"
)


def _row_to_job(row) -> ExtractionJob:
    getter = row.get if hasattr(row, "get") else lambda k: row[k]
    metadata = getter("metadata")
    stage = getter("current_stage")
    return ExtractionJob(
        id=getter("job_id"),
        filename=getter("filename"),
        file_size=int(getter("file_size")),
        status=JobStatus(getter("status")),
        progress=int(getter("progress")),
        current_stage=JobStage(stage) if stage else None,
        total_pages=getter("total_pages"),
        pages_processed=int(getter("pages_processed") or 0),
        images_found=int(getter("images_found") or 0),
        total_image_size=int(getter("total_image_size") or 0),
        logs=[LogEntry.from_dict(item) for item in getter("logs") or []],
        metadata=ExtractionMetadata.from_dict(metadata) if metadata else None,
        zip_path=getter("zip_path"),
        json_path=getter("json_path"),
        started_at=getter("started_at"),
        completed_at=getter("completed_at"),
        error_message=getter("error_message"),
    )


def _to_column_value(key: str, value: Any) -> Any:
    if isinstance(value, (JobStatus, JobStage)):
        return value.value
    if key == "metadata" and value is not None:
        return Jsonb(value.to_dict())
    return value


class PostgresJobStore:
    """Durable store on the `extraction_jobs` table; every call is a single statement."""

    def __init__(self, pool=None) -> None:
        self._pool = pool

    def _get_pool(self):
        return self._pool if self._pool is not None else db.get_pool()

    def ensure_table(self) -> None:
        with self._get_pool().connection() as conn, conn.cursor() as cur:
            cur.execute(TABLE_DDL)
            conn.commit()

    def create(self, filename: str, file_size: int) -> ExtractionJob:
        job_id = str(uuid.uuid4())
        with self._get_pool().connection() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO extraction_jobs (job_id, filename, file_size, status, progress, current_stage)
                VALUES (%(job_id)s, %(filename)s, %(file_size)s, %(status)s, 0, %(current_stage)s)
                RETURNING {COLUMNS}
                """,
                {
                    "job_id": job_id,
                    "filename": filename,
                    "file_size": file_size,
                    "status": JobStatus.pending.value,
                    "current_stage": JobStage.parsing.value,
                },
            )
            row = cur.fetchone()
            conn.commit()
        return _row_to_job(row)

    def get(self, job_id: str) -> Optional[ExtractionJob]:
        with self._get_pool().connection() as conn, conn.cursor() as cur:
            cur.execute(
                f"SELECT {COLUMNS} FROM extraction_jobs WHERE job_id = %(job_id)s",
                {"job_id": job_id},
            )
            row = cur.fetchone()
        return _row_to_job(row) if row else None

    def update(self, job_id: str, **fields: Any) -> Optional[ExtractionJob]:
        changes = _clean_fields(job_id, fields)
        if not changes:
            return self.get(job_id)

        params: Dict[str, Any] = {"job_id": job_id}
        set_clauses = []
        for key, value in changes.items():
            set_clauses.append(f"{key} = %({key})s")
            params[key] = _to_column_value(key, value)

        query = f"""
            UPDATE extraction_jobs
            SET {", ".join(set_clauses)}
            WHERE job_id = %(job_id)s
            RETURNING {COLUMNS}
        """
        with self._get_pool().connection() as conn, conn.cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
            conn.commit()
        return _row_to_job(row) if row else None

    def append_log(self, job_id: str, entry: LogEntry) -> Optional[ExtractionJob]:
        with self._get_pool().connection() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE extraction_jobs
                SET logs = logs || %(entry)s
                WHERE job_id = %(job_id)s
                RETURNING {COLUMNS}
                """,
                {"job_id": job_id, "entry": Jsonb([entry.to_dict()])},
            )
            row = cur.fetchone()
            conn.commit()
        return _row_to_job(row) if row else None

    def list(self) -> List[ExtractionJob]:
        with self._get_pool().connection() as conn, conn.cursor() as cur:
            cur.execute(f"SELECT {COLUMNS} FROM extraction_jobs ORDER BY started_at")
            rows = cur.fetchall()
        return [_row_to_job(row) for row in rows]


def build_job_store(backend: str) -> JobStore:
    if backend == "memory":
        return InMemoryJobStore()
    if backend == "postgres":
        db.init_pool()
        store = PostgresJobStore()
        store.ensure_table()
        return store
    raise ValueError(f"Unknown job store backend: {backend}")
