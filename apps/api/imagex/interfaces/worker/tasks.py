import logging
from pathlib import Path

from celery.exceptions import SoftTimeLimitExceeded

from imagex.application.extraction_service import ExtractionPipeline
from imagex.application.job_runner import mark_crashed
from imagex.infrastructure.db import connection as db
from imagex.infrastructure.db.job_store import PostgresJobStore
from imagex.infrastructure.messaging.celery_app import EXTRACT_TASK, celery_app

logger = logging.getLogger(__name__)


def _get_store() -> PostgresJobStore:
    try:
        db.get_pool()
    except RuntimeError:
        db.init_pool()
    return PostgresJobStore()


@celery_app.task(name=EXTRACT_TASK)
def extract_images(job_id: str, pdf_path: str) -> str:
    """
    Celery task running the extraction pipeline for one uploaded PDF.

    The worker shares the job table with the API, so the API can serve
    status polls while this runs in another process.
    """
    logger.info("Starting extraction job %s for %s", job_id, pdf_path)
    store = _get_store()
    pipeline = ExtractionPipeline(store, interrupts=(SoftTimeLimitExceeded,))

    try:
        pipeline.run(job_id, Path(pdf_path))
    except SoftTimeLimitExceeded:
        mark_crashed(store, job_id, "Extraction exceeded the worker time limit.")
        logger.exception("Extraction job %s timed out", job_id)
        raise
    except Exception as exc:
        mark_crashed(store, job_id, str(exc) or exc.__class__.__name__)
        logger.exception("Extraction job %s crashed", job_id)
        raise

    job = store.get(job_id)
    status = job.status.value if job else "missing"
    logger.info("Extraction job %s finished (%s)", job_id, status)
    return status


class CeleryJobRunner:
    """Hands jobs to the `extract` queue; requires the Postgres job store."""

    def submit(self, job_id: str, pdf_path: Path) -> None:
        extract_images.delay(job_id, str(pdf_path))

    def shutdown(self, wait: bool = True) -> None:
        return None
