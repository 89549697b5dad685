from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from imagex.core.domain.errors import ToolError


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str


def inspect_image(image_path: Path) -> ImageInfo:
    """Read dimensions and format from the image header without decoding pixels."""
    try:
        with Image.open(image_path) as img:
            width, height = img.size
            fmt = (img.format or "UNKNOWN").upper()
    except (UnidentifiedImageError, OSError) as exc:
        raise ToolError("pillow", f"{image_path.name}: {exc}") from exc
    return ImageInfo(width=width, height=height, format=fmt)
