from pathlib import Path

import pdfplumber

from imagex.core.domain.errors import ToolError


def count_pages(pdf_path: Path) -> int:
    try:
        with pdfplumber.open(pdf_path) as pdf:
            return len(pdf.pages)
    except Exception as exc:
        raise ToolError("pdfplumber", f"could not read page count: {exc}") from exc
