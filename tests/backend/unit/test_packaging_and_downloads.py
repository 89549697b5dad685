import json
import zipfile

import pytest

from imagex.application import download_service
from imagex.core.domain.errors import ArtifactNotFoundError
from imagex.core.domain.extraction import (
    Dimensions,
    ExtractionInfo,
    ExtractionMetadata,
    ImageMetadata,
    JobStatus,
    utcnow,
)
from imagex.infrastructure.db.job_store import InMemoryJobStore
from imagex.infrastructure.extraction.packaging import build_archive, write_metadata


def test_build_archive_is_flat_and_leaves_no_partial_file(tmp_path):
    nested = tmp_path / "deep" / "dir"
    nested.mkdir(parents=True)
    files = []
    for name in ("image-000.png", "image-001.jpg"):
        path = nested / name
        path.write_bytes(name.encode())
        files.append(path)

    zip_path = build_archive(files, tmp_path / "out" / "job.zip")

    with zipfile.ZipFile(zip_path) as archive:
        assert archive.namelist() == ["image-000.png", "image-001.jpg"]
        assert archive.read("image-001.jpg") == b"image-001.jpg"
    assert not (tmp_path / "out" / "job.zip.part").exists()


def test_build_archive_failure_removes_partial_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_archive([tmp_path / "missing.png"], tmp_path / "job.zip")
    assert list(tmp_path.iterdir()) == []


def test_write_metadata_writes_document(tmp_path):
    metadata = ExtractionMetadata(
        info=ExtractionInfo("report.pdf", 1, utcnow(), "0:01", 1),
        images=[ImageMetadata("image-000.png", 1, 10, Dimensions(2, 1), "PNG")],
    )
    path = write_metadata(metadata, tmp_path / "meta.json")
    assert json.loads(path.read_text())["extractionInfo"]["totalImages"] == 1


@pytest.mark.parametrize(
    "filename, expected",
    [("Report.PDF", "Report"), ("annual report.pdf", "annual report"), (".pdf", "document"), ("notes", "notes")],
)
def test_download_basename(filename, expected):
    assert download_service.download_basename(filename) == expected


def test_downloads_serve_stored_artifacts(tmp_path):
    store = InMemoryJobStore()
    job = store.create("quarterly.pdf", 10)
    zip_path = tmp_path / "a.zip"
    json_path = tmp_path / "a.json"
    zip_path.write_bytes(b"PK")
    json_path.write_text("{}")
    store.update(job.id, status=JobStatus.completed, zip_path=str(zip_path), json_path=str(json_path))

    archive = download_service.read_archive(store, job.id)
    assert archive.filename == "quarterly-images.zip"
    assert archive.media_type == "application/zip"
    assert archive.content == b"PK"

    metadata = download_service.read_metadata(store, job.id)
    assert metadata.filename == "quarterly-metadata.json"
    assert metadata.media_type == "application/json"


def test_downloads_missing_artifacts(tmp_path):
    store = InMemoryJobStore()
    job = store.create("quarterly.pdf", 10)

    with pytest.raises(ArtifactNotFoundError, match="ZIP file not found"):
        download_service.read_archive(store, job.id)
    with pytest.raises(ArtifactNotFoundError, match="JSON file not found"):
        download_service.read_metadata(store, "unknown")

    store.update(job.id, zip_path=str(tmp_path / "deleted.zip"))
    with pytest.raises(ArtifactNotFoundError):
        download_service.read_archive(store, job.id)
