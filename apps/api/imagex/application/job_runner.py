import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from functools import partial
from pathlib import Path
from typing import Dict, Optional, Protocol

from imagex.application.extraction_service import ExtractionPipeline
from imagex.core.domain.extraction import JobStatus, LogEntry, LogLevel, utcnow
from imagex.infrastructure.db.job_store import JobStore

logger = logging.getLogger(__name__)

WORKER_THREADS = int(os.environ.get("WORKER_THREADS", "4"))


class JobRunner(Protocol):
    def submit(self, job_id: str, pdf_path: Path) -> None: ...

    def shutdown(self, wait: bool = True) -> None: ...


def mark_crashed(store: JobStore, job_id: str, message: str) -> None:
    """Move a job that died outside the pipeline's own handling to `failed`."""
    job = store.get(job_id)
    if job is None or job.is_terminal:
        return
    store.append_log(job_id, LogEntry.now(LogLevel.error, f"Processing failed: {message}"))
    store.update(
        job_id,
        status=JobStatus.failed,
        error_message=message,
        completed_at=utcnow(),
    )


class ThreadJobRunner:
    """Runs each job on a worker thread, detached from the request that submitted it."""

    def __init__(self, pipeline: ExtractionPipeline, max_workers: int = WORKER_THREADS) -> None:
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="extract"
        )
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(self, job_id: str, pdf_path: Path) -> None:
        future = self._executor.submit(self._run, job_id, Path(pdf_path))
        with self._lock:
            self._futures[job_id] = future
        future.add_done_callback(partial(self._on_done, job_id))
        logger.info("Submitted extraction job %s", job_id, extra={"job_id": job_id})

    def _run(self, job_id: str, pdf_path: Path) -> None:
        try:
            self.pipeline.run(job_id, pdf_path)
        except Exception as exc:
            logger.exception("Extraction job %s crashed", job_id)
            self._record_failure(job_id, str(exc) or exc.__class__.__name__)

    def _record_failure(self, job_id: str, message: str) -> None:
        try:
            mark_crashed(self.pipeline.store, job_id, message)
        except Exception:
            logger.exception("Could not record failure for job %s", job_id)

    def _on_done(self, job_id: str, future: Future) -> None:
        with self._lock:
            self._futures.pop(job_id, None)
        if future.cancelled():
            self._record_failure(job_id, "Extraction was cancelled before it started")

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until `job_id` finishes. Returns False on timeout."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is None:
            return True
        done, _ = wait_futures([future], timeout=timeout)
        return bool(done)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
