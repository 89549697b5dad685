"""
Client-side status poller for extraction jobs.

Polls `GET /api/jobs/{id}` every couple of seconds while the job is pending or
processing and derives display state from the record alone. It never writes
job state; the only non-GET call is the optional upload that starts a job.

Usage:
    python -m imagex.interfaces.client.poller --file report.pdf --download out/
    python -m imagex.interfaces.client.poller --job-id <id>
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = os.environ.get("IMAGEX_API_URL", "http://localhost:8000")
POLL_INTERVAL_SECONDS = 2.0
REQUEST_TIMEOUT_SECONDS = 10

ACTIVE_STATUSES = {"pending", "processing"}
STAGES = ("parsing", "extracting", "zipping")

JobRecord = Dict[str, Any]


class JobNotFound(LookupError):
    pass


@dataclass
class StageView:
    name: str
    state: str  # completed | active | failed | pending
    label: str


@dataclass
class JobView:
    status: str
    progress: int
    is_processing: bool
    is_completed: bool
    is_failed: bool
    elapsed: str
    images_found: int
    total_image_size: str
    error: Optional[str] = None
    stages: List[StageView] = field(default_factory=list)


def format_size(num_bytes: int) -> str:
    if not num_bytes:
        return "0"
    units = ["B", "KB", "MB", "GB"]
    value = float(num_bytes)
    exponent = 0
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 1):g} {units[exponent]}"


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_elapsed(job: JobRecord, now: Optional[datetime] = None) -> str:
    started = _parse_ts(job.get("startedAt"))
    if started is None:
        return "0:00"
    end = _parse_ts(job.get("completedAt")) or now or datetime.now(timezone.utc)
    seconds = max(0, int((end - started).total_seconds()))
    return f"{seconds // 60}:{seconds % 60:02d}"


def _active_label(stage: str, job: JobRecord) -> str:
    if stage == "parsing":
        return "Analyzing PDF..."
    if stage == "extracting":
        return f"Processing page {job.get('pagesProcessed', 0)}/{job.get('totalPages') or '?'}"
    if stage == "zipping":
        return "Creating archive..."
    return "Processing..."


def _stage_views(job: JobRecord) -> List[StageView]:
    status = job.get("status")
    current = job.get("currentStage") or STAGES[0]
    current_idx = STAGES.index(current) if current in STAGES else 0

    views = []
    for idx, stage in enumerate(STAGES):
        if status == "completed" or (status != "pending" and idx < current_idx):
            views.append(StageView(stage, "completed", "Completed"))
        elif idx == current_idx and status == "processing":
            views.append(StageView(stage, "active", _active_label(stage, job)))
        elif idx == current_idx and status == "failed":
            views.append(StageView(stage, "failed", "Failed"))
        else:
            views.append(StageView(stage, "pending", "Pending"))
    return views


def describe(job: JobRecord, now: Optional[datetime] = None) -> JobView:
    """Derive everything a UI shows for a job from the polled record."""
    status = job.get("status", "pending")
    return JobView(
        status=status,
        progress=int(job.get("progress") or 0),
        is_processing=status in ACTIVE_STATUSES,
        is_completed=status == "completed",
        is_failed=status == "failed",
        elapsed=format_elapsed(job, now),
        images_found=int(job.get("imagesFound") or 0),
        total_image_size=format_size(int(job.get("totalImageSize") or 0)),
        error=job.get("errorMessage") if status == "failed" else None,
        stages=_stage_views(job),
    )


def fetch_job(session: requests.Session, base_url: str, job_id: str) -> JobRecord:
    resp = session.get(f"{base_url.rstrip('/')}/api/jobs/{job_id}", timeout=REQUEST_TIMEOUT_SECONDS)
    if resp.status_code == 404:
        raise JobNotFound(job_id)
    resp.raise_for_status()
    return resp.json()


def poll_job(
    base_url: str,
    job_id: str,
    interval: float = POLL_INTERVAL_SECONDS,
    session: Optional[requests.Session] = None,
    on_update: Optional[Callable[[JobRecord, JobView], None]] = None,
    max_polls: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> JobRecord:
    """
    Poll until the job reaches `completed` or `failed` and return the last record.

    Raises TimeoutError when `max_polls` is reached first.
    """
    session = session or requests.Session()
    polls = 0
    while True:
        job = fetch_job(session, base_url, job_id)
        polls += 1
        view = describe(job)
        if on_update:
            on_update(job, view)
        if not view.is_processing:
            return job
        if max_polls is not None and polls >= max_polls:
            raise TimeoutError(f"Job {job_id} still {view.status} after {polls} polls")
        sleep(interval)


def upload_pdf(session: requests.Session, base_url: str, pdf_path: Path) -> str:
    with pdf_path.open("rb") as fh:
        resp = session.post(
            f"{base_url.rstrip('/')}/api/extract",
            files={"pdf": (pdf_path.name, fh, "application/pdf")},
            timeout=None,
        )
    if resp.status_code >= 400:
        message = _error_message(resp)
        raise RuntimeError(f"Upload rejected ({resp.status_code}): {message}")
    return resp.json()["jobId"]


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        # Proxies answer 413/502 with HTML pages.
        return resp.text.strip() or resp.reason
    if isinstance(payload, dict) and payload.get("message"):
        return payload["message"]
    return resp.text.strip() or resp.reason


def download_artifacts(
    session: requests.Session, base_url: str, job_id: str, dest_dir: Path
) -> List[Path]:
    dest_dir.mkdir(parents=True, exist_ok=True)
    saved = []
    for kind, fallback in (("zip", f"{job_id}-images.zip"), ("json", f"{job_id}-metadata.json")):
        resp = session.get(
            f"{base_url.rstrip('/')}/api/jobs/{job_id}/download/{kind}",
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        target = dest_dir / _disposition_filename(resp.headers.get("Content-Disposition"), fallback)
        target.write_bytes(resp.content)
        saved.append(target)
    return saved


def _disposition_filename(header: Optional[str], fallback: str) -> str:
    if not header:
        return fallback
    for part in header.split(";"):
        key, _, value = part.strip().partition("=")
        if key == "filename" and value:
            return Path(value.strip('"')).name or fallback
    return fallback


def _print_update(job: JobRecord, view: JobView) -> None:
    active = next((s.label for s in view.stages if s.state == "active"), view.status)
    print(
        f"[{view.elapsed}] {view.status:<10} {view.progress:>3}%  {active}  "
        f"images={view.images_found} ({view.total_image_size})"
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Start or follow a PDF image extraction job")
    parser.add_argument("--url", default=DEFAULT_BASE_URL, help="API base URL")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--file", type=Path, help="PDF to upload before polling")
    target.add_argument("--job-id", help="Existing job to follow")
    parser.add_argument("--interval", type=float, default=POLL_INTERVAL_SECONDS)
    parser.add_argument("--download", type=Path, default=None, help="Save artifacts here on success")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    session = requests.Session()
    job_id = args.job_id
    if args.file:
        job_id = upload_pdf(session, args.url, args.file)
        logger.info("Uploaded %s as job %s", args.file.name, job_id)

    try:
        job = poll_job(args.url, job_id, interval=args.interval, session=session, on_update=_print_update)
    except JobNotFound:
        logger.error("Job %s not found", job_id)
        return 2

    view = describe(job)
    if view.is_failed:
        logger.error("Extraction failed: %s", view.error)
        return 1

    if args.download:
        for path in download_artifacts(session, args.url, job_id, args.download):
            logger.info("Saved %s", path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
