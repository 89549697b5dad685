from typing import List
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Response, status

from imagex.application import download_service
from imagex.application.download_service import Artifact
from imagex.core.domain.errors import ArtifactNotFoundError
from imagex.infrastructure.db.job_store import JobStore
from imagex.interfaces.api.deps import get_job_store
from imagex.interfaces.api.schemas import ErrorResponse, ExtractionJobOut

router = APIRouter(prefix="/api/jobs")


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _artifact_response(artifact: Artifact) -> Response:
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": _content_disposition(artifact.filename)},
    )


@router.get("", response_model=List[ExtractionJobOut])
def list_jobs(store: JobStore = Depends(get_job_store)) -> List[ExtractionJobOut]:
    return [ExtractionJobOut.model_validate(job.to_dict()) for job in store.list()]


@router.get(
    "/{job_id}",
    response_model=ExtractionJobOut,
    responses={404: {"model": ErrorResponse}},
)
def get_job(job_id: str, store: JobStore = Depends(get_job_store)) -> ExtractionJobOut:
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return ExtractionJobOut.model_validate(job.to_dict())


@router.get("/{job_id}/download/zip", responses={404: {"model": ErrorResponse}})
def download_zip(job_id: str, store: JobStore = Depends(get_job_store)) -> Response:
    try:
        artifact = download_service.read_archive(store, job_id)
    except ArtifactNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _artifact_response(artifact)


@router.get("/{job_id}/download/json", responses={404: {"model": ErrorResponse}})
def download_json(job_id: str, store: JobStore = Depends(get_job_store)) -> Response:
    try:
        artifact = download_service.read_metadata(store, job_id)
    except ArtifactNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _artifact_response(artifact)
