from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class JobStage(str, Enum):
    parsing = "parsing"
    extracting = "extracting"
    zipping = "zipping"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]


_STAGE_ORDER = {JobStage.parsing: 0, JobStage.extracting: 1, JobStage.zipping: 2}

TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.failed})


class LogLevel(str, Enum):
    info = "INFO"
    debug = "DEBUG"
    warn = "WARN"
    error = "ERROR"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: LogLevel
    message: str

    @classmethod
    def now(cls, level: LogLevel, message: str) -> "LogEntry":
        return cls(timestamp=utcnow(), level=level, message=message)

    def to_dict(self) -> Dict[str, str]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls(
            timestamp=_parse_dt(data["timestamp"]),
            level=LogLevel(data["level"]),
            message=data["message"],
        )


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int

    @property
    def aspect_ratio(self) -> float:
        if not self.width or not self.height:
            return 0.0
        return round(self.width / self.height, 2)


@dataclass(frozen=True)
class Position:
    # PDF placement is not recovered from the extracted streams.
    x: float = 0
    y: float = 0


@dataclass(frozen=True)
class ImageMetadata:
    filename: str
    page: int
    size_bytes: int
    dimensions: Dimensions
    format: str
    position: Position = field(default_factory=Position)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "page": self.page,
            "sizeBytes": self.size_bytes,
            "dimensions": {
                "width": self.dimensions.width,
                "height": self.dimensions.height,
                "aspectRatio": self.dimensions.aspect_ratio,
            },
            "format": self.format,
            "position": {"x": self.position.x, "y": self.position.y},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageMetadata":
        dims = data.get("dimensions") or {}
        pos = data.get("position") or {}
        return cls(
            filename=data["filename"],
            page=int(data["page"]),
            size_bytes=int(data["sizeBytes"]),
            dimensions=Dimensions(int(dims.get("width", 0)), int(dims.get("height", 0))),
            format=data.get("format") or "UNKNOWN",
            position=Position(pos.get("x", 0), pos.get("y", 0)),
        )


@dataclass(frozen=True)
class ExtractionInfo:
    pdf_filename: str
    total_pages: int
    extraction_date: datetime
    processing_time: str
    total_images: int


@dataclass(frozen=True)
class ExtractionMetadata:
    info: ExtractionInfo
    images: List[ImageMetadata]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "extractionInfo": {
                "pdfFilename": self.info.pdf_filename,
                "totalPages": self.info.total_pages,
                "extractionDate": self.info.extraction_date.isoformat(),
                "processingTime": self.info.processing_time,
                "totalImages": self.info.total_images,
            },
            "images": [image.to_dict() for image in self.images],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionMetadata":
        info = data["extractionInfo"]
        return cls(
            info=ExtractionInfo(
                pdf_filename=info["pdfFilename"],
                total_pages=int(info["totalPages"]),
                extraction_date=_parse_dt(info["extractionDate"]),
                processing_time=info["processingTime"],
                total_images=int(info["totalImages"]),
            ),
            images=[ImageMetadata.from_dict(item) for item in data.get("images", [])],
        )


@dataclass
class ExtractionJob:
    id: str
    filename: str
    file_size: int
    status: JobStatus = JobStatus.pending
    progress: int = 0
    current_stage: Optional[JobStage] = JobStage.parsing
    total_pages: Optional[int] = None
    pages_processed: int = 0
    images_found: int = 0
    total_image_size: int = 0
    logs: List[LogEntry] = field(default_factory=list)
    metadata: Optional[ExtractionMetadata] = None
    zip_path: Optional[str] = None
    json_path: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    # id, filename, file_size and started_at never change; logs only grow via append_log.
    UPDATABLE_FIELDS = frozenset(
        {
            "status",
            "progress",
            "current_stage",
            "total_pages",
            "pages_processed",
            "images_found",
            "total_image_size",
            "metadata",
            "zip_path",
            "json_path",
            "completed_at",
            "error_message",
        }
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "fileSize": self.file_size,
            "status": self.status.value,
            "progress": self.progress,
            "currentStage": self.current_stage.value if self.current_stage else None,
            "totalPages": self.total_pages,
            "pagesProcessed": self.pages_processed,
            "imagesFound": self.images_found,
            "totalImageSize": self.total_image_size,
            "logs": [entry.to_dict() for entry in self.logs],
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "zipPath": self.zip_path,
            "jsonPath": self.json_path,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "errorMessage": self.error_message,
        }


def assign_page(index: int, image_count: int, total_pages: Optional[int]) -> int:
    """
    Best-effort page number for the image at `index` (0-based, discovery order).

    Images are spread evenly over the known page count; this is a heuristic,
    not a structural mapping from the PDF.
    """
    if not total_pages or total_pages <= 0:
        return 1
    per_page = max(1, image_count // total_pages)
    return min(total_pages, index // per_page + 1)


def format_duration(seconds: float) -> str:
    total = max(0, int(seconds))
    minutes, remaining = divmod(total, 60)
    return f"{minutes}:{remaining:02d}"
