import logging
import os
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from imagex.core.domain.errors import ToolError

logger = logging.getLogger(__name__)

PDFIMAGES_BIN = os.environ.get("PDFIMAGES_BIN", "pdfimages")
IMAGE_PREFIX = "image"
# pdfimages -all also emits tif/jp2/jb2e/ccitt streams; only browser-friendly formats are kept.
IMAGE_FILE_PATTERN = re.compile(r"\.(jpg|jpeg|png|ppm|pbm|pgm)$", re.IGNORECASE)
# pdfimages pads the running number to three digits, so image-1000 follows image-999.
IMAGE_NUMBER_PATTERN = re.compile(r"-(\d+)\.[^.]+$")


def _extraction_order(path: Path) -> Tuple[int, str]:
    match = IMAGE_NUMBER_PATTERN.search(path.name)
    return (int(match.group(1)) if match else -1, path.name)


def list_image_files(out_dir: Path) -> List[Path]:
    return sorted(
        (
            path
            for path in out_dir.iterdir()
            if path.is_file() and IMAGE_FILE_PATTERN.search(path.name)
        ),
        key=_extraction_order,
    )


def extract_images(pdf_path: Path, out_dir: Path, timeout: Optional[float] = None) -> List[Path]:
    """
    Dump every embedded image of `pdf_path` into `out_dir` with poppler's pdfimages.

    Returns the extracted image files in discovery order (pdfimages numbers
    them sequentially, so name order is extraction order).
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    cmd = [PDFIMAGES_BIN, "-all", str(pdf_path), str(out_dir / IMAGE_PREFIX)]
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=True, timeout=timeout
        )
    except FileNotFoundError as exc:
        raise ToolError("pdfimages", f"binary not found ({PDFIMAGES_BIN})") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolError("pdfimages", f"timed out after {timeout}s") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise ToolError("pdfimages", stderr or f"exit status {exc.returncode}") from exc

    if result.stderr:
        logger.debug("pdfimages stderr for %s: %s", pdf_path.name, result.stderr.strip())
    return list_image_files(out_dir)
