from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from imagex.core.domain.errors import ArtifactNotFoundError
from imagex.core.domain.extraction import ExtractionJob
from imagex.infrastructure.db.job_store import JobStore


@dataclass(frozen=True)
class Artifact:
    content: bytes
    filename: str
    media_type: str


def download_basename(filename: str) -> str:
    name = Path(filename).name
    if name.lower().endswith(".pdf"):
        name = name[: -len(".pdf")]
    return name or "document"


def _read(job: Optional[ExtractionJob], path: Optional[str], label: str) -> bytes:
    if job is None or not path:
        raise ArtifactNotFoundError(f"{label} not found")
    try:
        return Path(path).read_bytes()
    except FileNotFoundError as exc:
        raise ArtifactNotFoundError(f"{label} not found") from exc


def read_archive(store: JobStore, job_id: str) -> Artifact:
    job = store.get(job_id)
    content = _read(job, job.zip_path if job else None, "ZIP file")
    return Artifact(
        content=content,
        filename=f"{download_basename(job.filename)}-images.zip",
        media_type="application/zip",
    )


def read_metadata(store: JobStore, job_id: str) -> Artifact:
    job = store.get(job_id)
    content = _read(job, job.json_path if job else None, "JSON file")
    return Artifact(
        content=content,
        filename=f"{download_basename(job.filename)}-metadata.json",
        media_type="application/json",
    )
