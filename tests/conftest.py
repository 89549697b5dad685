import sys
from pathlib import Path
from typing import List

import pytest

# Ensure apps/api is on path so `imagex` imports work without an editable install.
ROOT = Path(__file__).resolve().parents[1]
API_PATH = ROOT / "apps" / "api"
if str(API_PATH) not in sys.path:
    sys.path.insert(0, str(API_PATH))

from imagex.core.domain.errors import ToolError  # noqa: E402
from imagex.infrastructure.db.job_store import InMemoryJobStore  # noqa: E402
from imagex.infrastructure.extraction.image_info import ImageInfo  # noqa: E402
from imagex.infrastructure.extraction.tools import ExtractionTools  # noqa: E402


class FakeTools:
    """Stand-ins for pdfplumber / pdfimages / Pillow driven by plain parameters."""

    def __init__(
        self,
        pages=3,
        images=5,
        broken=(),
        page_error=None,
        extract_error=None,
    ):
        self.pages = pages
        self.images = images
        self.broken = set(broken)
        self.page_error = page_error
        self.extract_error = extract_error
        self.timeouts: List[object] = []

    def inspect_page_count(self, pdf_path: Path) -> int:
        if self.page_error:
            raise self.page_error
        return self.pages

    def extract_images(self, pdf_path: Path, out_dir: Path, timeout=None) -> List[Path]:
        self.timeouts.append(timeout)
        if self.extract_error:
            raise self.extract_error
        out_dir.mkdir(parents=True, exist_ok=True)
        files = []
        for idx in range(self.images):
            path = out_dir / f"image-{idx:03d}.png"
            path.write_bytes(b"\x89PNG" + b"x" * (1024 * (idx + 1)))
            files.append(path)
        # A stream pdfimages emits that is not a kept image type.
        (out_dir / "image-999.tif").write_bytes(b"tif")
        return files

    def inspect_image(self, image_path: Path) -> ImageInfo:
        if image_path.name in self.broken:
            raise ToolError("pillow", f"{image_path.name}: cannot identify image file")
        return ImageInfo(width=640, height=480, format="PNG")

    def bundle(self) -> ExtractionTools:
        return ExtractionTools(
            inspect_page_count=self.inspect_page_count,
            extract_images=self.extract_images,
            inspect_image=self.inspect_image,
        )


class RecordingStore(InMemoryJobStore):
    """In-memory store that keeps every committed snapshot for ordering assertions."""

    def __init__(self):
        super().__init__()
        self.history = []

    def update(self, job_id, **fields):
        job = super().update(job_id, **fields)
        if job is not None:
            self.history.append(job)
        return job


@pytest.fixture
def fake_tools():
    return FakeTools


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def uploaded_pdf(tmp_path):
    path = tmp_path / "uploads" / "upload.pdf"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"%PDF-1.7\n%fake\n")
    return path
