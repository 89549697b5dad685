from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from imagex.infrastructure.extraction.image_info import ImageInfo, inspect_image
from imagex.infrastructure.extraction.pdf_images import extract_images
from imagex.infrastructure.extraction.pdf_info import count_pages

PageCounter = Callable[[Path], int]
ImageExtractor = Callable[[Path, Path, Optional[float]], List[Path]]
ImageInspector = Callable[[Path], ImageInfo]


@dataclass(frozen=True)
class ExtractionTools:
    """The three external capabilities the pipeline depends on."""

    inspect_page_count: PageCounter
    extract_images: ImageExtractor
    inspect_image: ImageInspector


DEFAULT_TOOLS = ExtractionTools(
    inspect_page_count=count_pages,
    extract_images=extract_images,
    inspect_image=inspect_image,
)
