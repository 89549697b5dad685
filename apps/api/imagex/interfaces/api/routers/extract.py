import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from imagex.application import extraction_service
from imagex.application.job_runner import JobRunner, mark_crashed
from imagex.core.domain.errors import UploadTooLargeError
from imagex.infrastructure.db.job_store import JobStore
from imagex.interfaces.api.deps import get_job_runner, get_job_store
from imagex.interfaces.api.schemas import ErrorResponse, ExtractResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

ALLOWED_CONTENT_TYPES = {"application/pdf", "application/x-pdf"}
UPLOAD_FIELD = "pdf"
NO_FILE_MESSAGE = "No PDF file uploaded"


def is_upload_field_error(error: dict) -> bool:
    """True for a validation error on the `pdf` part, e.g. a plain text value instead of a file."""
    return tuple(error.get("loc", ()))[:2] == ("body", UPLOAD_FIELD)


@router.post(
    "/extract",
    response_model=ExtractResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def start_extraction(
    pdf: Optional[UploadFile] = File(default=None),
    store: JobStore = Depends(get_job_store),
    runner: JobRunner = Depends(get_job_runner),
) -> ExtractResponse:
    # Everything is validated before a job record exists.
    if pdf is None or not pdf.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=NO_FILE_MESSAGE
        )
    if pdf.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Only PDF files are allowed"
        )

    try:
        saved_path, file_size = extraction_service.save_upload(
            pdf,
            upload_root=extraction_service.UPLOAD_ROOT,
            max_bytes=extraction_service.MAX_UPLOAD_BYTES,
        )
    except UploadTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    except OSError as exc:
        logger.exception("Could not store upload %s", pdf.filename)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not save the uploaded file.",
        ) from exc

    job = store.create(filename=Path(pdf.filename).name, file_size=file_size)

    try:
        runner.submit(job.id, saved_path)
    except Exception as exc:
        logger.exception("Could not hand job %s to the runner", job.id)
        mark_crashed(store, job.id, f"Could not start extraction: {exc}")
        saved_path.unlink(missing_ok=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not start extraction.",
        ) from exc

    logger.info(
        "extraction_job_created",
        extra={"job_id": job.id, "upload_name": job.filename, "file_size": file_size},
    )
    return ExtractResponse(job_id=job.id)
