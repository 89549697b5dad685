import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional, Tuple, Type

from fastapi import UploadFile

from imagex.core.domain.errors import NoImagesFoundError, ToolError, UploadTooLargeError
from imagex.core.domain.extraction import (
    Dimensions,
    ExtractionInfo,
    ExtractionMetadata,
    ImageMetadata,
    JobStage,
    JobStatus,
    LogEntry,
    LogLevel,
    assign_page,
    format_duration,
    utcnow,
)
from imagex.infrastructure.db.job_store import JobStore
from imagex.infrastructure.extraction.packaging import build_archive, write_metadata
from imagex.infrastructure.extraction.tools import DEFAULT_TOOLS, ExtractionTools

logger = logging.getLogger(__name__)

UPLOAD_ROOT = Path(os.environ.get("UPLOAD_ROOT", "data/uploads"))
OUTPUT_ROOT = Path(os.environ.get("OUTPUT_ROOT", "data/temp"))
ARCHIVE_ROOT = Path(os.environ.get("ARCHIVE_ROOT", "data/artifacts"))

MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", "500"))
MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024
TOOL_TIMEOUT_SECONDS = float(os.environ.get("TOOL_TIMEOUT_SECONDS", "300"))

_PY_LEVELS = {
    LogLevel.debug: logging.DEBUG,
    LogLevel.info: logging.INFO,
    LogLevel.warn: logging.WARNING,
    LogLevel.error: logging.ERROR,
}


def save_upload(
    upload: UploadFile,
    upload_root: Path = UPLOAD_ROOT,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> Tuple[Path, int]:
    """Stream the uploaded PDF to disk. Returns (path, size in bytes)."""
    upload_root.mkdir(parents=True, exist_ok=True)
    dest_path = upload_root / f"{uuid.uuid4().hex}.pdf"

    bytes_written = 0
    upload.file.seek(0)
    with dest_path.open("wb") as buffer:
        while True:
            chunk = upload.file.read(1024 * 512)
            if not chunk:
                break
            bytes_written += len(chunk)
            if bytes_written > max_bytes:
                buffer.close()
                dest_path.unlink(missing_ok=True)
                raise UploadTooLargeError(
                    f"File exceeds the {max_bytes // (1024 * 1024)}MB limit."
                )
            buffer.write(chunk)

    return dest_path, bytes_written


class _JobRun:
    """Per-run view of one job: appends log entries and keeps progress from moving backwards."""

    def __init__(self, store: JobStore, job_id: str) -> None:
        self.store = store
        self.job_id = job_id
        self.progress = 0
        self.terminal = False

    def log(self, level: LogLevel, message: str) -> None:
        self.store.append_log(self.job_id, LogEntry.now(level, message))
        logger.log(_PY_LEVELS[level], message, extra={"job_id": self.job_id})

    def update(self, **fields) -> None:
        if "progress" in fields:
            self.progress = max(self.progress, fields["progress"])
            fields["progress"] = self.progress
        job = self.store.update(self.job_id, **fields)
        if job is not None and job.is_terminal:
            self.terminal = True

    def fail(self, log_message: str, error_message: str) -> None:
        if self.terminal:
            # Terminal states are final; an error after completion is only reported.
            logger.error("%s (job %s already finished)", log_message, self.job_id)
            return
        try:
            self.log(LogLevel.error, log_message)
        except Exception:
            logger.exception("Could not append failure log for job %s", self.job_id)
        self.update(
            status=JobStatus.failed,
            error_message=error_message,
            completed_at=utcnow(),
        )


class ExtractionPipeline:
    """
    Drives one job through parsing -> extracting -> zipping.

    Failures inside the stages never escape `run`: they end as a `failed`
    record with an ERROR log entry. Only a store that cannot be written at
    all lets an exception through, which the job runners handle.

    `interrupts` names exceptions that abort the run from outside (a worker
    time limit, for example). They pass through untouched, after upload
    cleanup, so the caller can record them in its own terms.
    """

    def __init__(
        self,
        store: JobStore,
        tools: ExtractionTools = DEFAULT_TOOLS,
        output_root: Path = OUTPUT_ROOT,
        archive_root: Path = ARCHIVE_ROOT,
        tool_timeout: Optional[float] = TOOL_TIMEOUT_SECONDS,
        interrupts: Tuple[Type[BaseException], ...] = (),
    ) -> None:
        self.store = store
        self.tools = tools
        self.output_root = Path(output_root)
        self.archive_root = Path(archive_root)
        self.tool_timeout = tool_timeout
        self.interrupts = tuple(interrupts)

    def run(self, job_id: str, pdf_path: Path) -> None:
        pdf_path = Path(pdf_path)
        job = self.store.get(job_id)
        if job is None:
            logger.warning("Job %s not found; nothing to extract", job_id)
            return
        if job.status != JobStatus.pending:
            # Redelivered task: the job was already claimed by another run.
            logger.warning("Job %s is %s, not pending; skipping", job_id, job.status.value)
            return

        run = _JobRun(self.store, job_id)
        try:
            self._execute(run, pdf_path)
        except self.interrupts:
            raise
        except Exception as exc:
            logger.exception("Extraction job %s failed", job_id)
            run.fail(f"Processing failed: {exc}", str(exc))
        finally:
            self._cleanup(run, pdf_path)

    def _execute(self, run: _JobRun, pdf_path: Path) -> None:
        run.log(LogLevel.info, f"PDF extraction started for: {pdf_path.name}")
        run.update(status=JobStatus.processing, current_stage=JobStage.parsing, progress=10)

        total_pages = self._parse(run, pdf_path)
        run.update(progress=20, current_stage=JobStage.extracting)

        try:
            images, image_files, total_size = self._extract(run, pdf_path, total_pages)
        except self.interrupts:
            raise
        except Exception as exc:
            run.fail(f"Image extraction failed: {exc}", str(exc))
            return

        self._package(run, images, image_files, total_size, total_pages)

    def _parse(self, run: _JobRun, pdf_path: Path) -> Optional[int]:
        try:
            total_pages = self.tools.inspect_page_count(pdf_path)
        except self.interrupts:
            raise
        except Exception as exc:
            logger.debug("Page count unavailable for job %s: %s", run.job_id, exc)
            run.log(LogLevel.warn, "Could not determine page count, proceeding with extraction")
            return None
        run.update(total_pages=total_pages)
        run.log(LogLevel.debug, f"Document contains {total_pages} pages")
        return total_pages

    def _extract(
        self, run: _JobRun, pdf_path: Path, total_pages: Optional[int]
    ) -> Tuple[List[ImageMetadata], List[Path], int]:
        out_dir = self.output_root / run.job_id
        files = self.tools.extract_images(pdf_path, out_dir, self.tool_timeout)
        run.log(LogLevel.info, "Image extraction completed, processing metadata...")

        images: List[ImageMetadata] = []
        image_files: List[Path] = []
        total_size = 0
        count = len(files)
        for index, image_path in enumerate(files):
            try:
                info = self.tools.inspect_image(image_path)
                size = image_path.stat().st_size
            except (ToolError, OSError) as exc:
                logger.debug("Skipping %s for job %s: %s", image_path.name, run.job_id, exc)
                run.log(LogLevel.warn, f"Failed to process image: {image_path.name}")
            else:
                image = ImageMetadata(
                    filename=image_path.name,
                    page=assign_page(index, count, total_pages),
                    size_bytes=size,
                    dimensions=Dimensions(info.width, info.height),
                    format=info.format,
                )
                images.append(image)
                image_files.append(image_path)
                total_size += size
                run.log(
                    LogLevel.info,
                    f"Processed {image.filename} ({info.width}x{info.height}, {round(size / 1024)}KB)",
                )

            processed = index + 1
            run.update(
                progress=20 + processed * 60 // count,
                pages_processed=min(total_pages, processed) if total_pages else processed,
                images_found=len(images),
                total_image_size=total_size,
            )

        if not images:
            raise NoImagesFoundError()
        return images, image_files, total_size

    def _package(
        self,
        run: _JobRun,
        images: List[ImageMetadata],
        image_files: List[Path],
        total_size: int,
        total_pages: Optional[int],
    ) -> None:
        run.update(
            progress=85,
            current_stage=JobStage.zipping,
            images_found=len(images),
            total_image_size=total_size,
        )
        run.log(LogLevel.info, "Creating ZIP archive...")

        zip_path = build_archive(image_files, self.archive_root / f"{run.job_id}.zip")

        job = self.store.get(run.job_id)
        if job is None:
            raise RuntimeError(f"Job {run.job_id} disappeared while packaging")
        finished = utcnow()
        metadata = ExtractionMetadata(
            info=ExtractionInfo(
                pdf_filename=job.filename,
                total_pages=total_pages or 0,
                extraction_date=finished,
                processing_time=format_duration((finished - job.started_at).total_seconds()),
                total_images=len(images),
            ),
            images=images,
        )
        json_path = write_metadata(
            metadata, self.archive_root / f"{run.job_id}_metadata.json"
        )

        run.update(
            status=JobStatus.completed,
            progress=100,
            metadata=metadata,
            zip_path=str(zip_path),
            json_path=str(json_path),
            completed_at=finished,
            images_found=len(images),
            total_image_size=total_size,
        )
        run.log(LogLevel.info, f"Extraction completed successfully! Found {len(images)} images.")
        logger.info(
            "extraction_completed",
            extra={
                "job_id": run.job_id,
                "images": len(images),
                "total_image_size": total_size,
                "processing_time": metadata.info.processing_time,
            },
        )

    def _cleanup(self, run: _JobRun, pdf_path: Path) -> None:
        try:
            pdf_path.unlink()
        except OSError as exc:
            logger.debug("Could not delete %s: %s", pdf_path, exc)
            try:
                run.log(LogLevel.warn, "Failed to clean up temporary files")
            except Exception:
                logger.exception("Could not append cleanup warning for job %s", run.job_id)
