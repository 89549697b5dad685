from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from imagex.core.domain.extraction import JobStage, JobStatus, LogLevel


class CamelModel(BaseModel):
    # Clients consume the record in camelCase (jobId, currentStage, ...).
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    message: str


class ExtractResponse(CamelModel):
    job_id: str


class LogEntryOut(CamelModel):
    timestamp: datetime
    level: LogLevel
    message: str


class DimensionsOut(CamelModel):
    width: int
    height: int
    aspect_ratio: float


class PositionOut(CamelModel):
    x: float = 0
    y: float = 0


class ImageMetadataOut(CamelModel):
    filename: str
    page: int = Field(ge=1)
    size_bytes: int = Field(ge=0)
    dimensions: DimensionsOut
    format: str
    position: PositionOut


class ExtractionInfoOut(CamelModel):
    pdf_filename: str
    total_pages: int
    extraction_date: datetime
    processing_time: str
    total_images: int


class ExtractionMetadataOut(CamelModel):
    extraction_info: ExtractionInfoOut
    images: List[ImageMetadataOut]


class ExtractionJobOut(CamelModel):
    id: str
    filename: str
    file_size: int
    status: JobStatus
    progress: int = Field(ge=0, le=100)
    current_stage: Optional[JobStage] = None
    total_pages: Optional[int] = None
    pages_processed: int = 0
    images_found: int = 0
    total_image_size: int = 0
    logs: List[LogEntryOut] = Field(default_factory=list)
    metadata: Optional[ExtractionMetadataOut] = None
    zip_path: Optional[str] = None
    json_path: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
