import json
import os
import zipfile
from pathlib import Path
from typing import Iterable

from imagex.core.domain.extraction import ExtractionMetadata


def build_archive(image_files: Iterable[Path], zip_path: Path) -> Path:
    """
    Zip `image_files` flat (by file name) into `zip_path`.

    The archive is written next to its destination and renamed into place,
    so `zip_path` only ever holds a complete archive.
    """
    zip_path.parent.mkdir(parents=True, exist_ok=True)
    partial = zip_path.with_name(zip_path.name + ".part")
    try:
        with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for image_file in image_files:
                archive.write(image_file, arcname=image_file.name)
        os.replace(partial, zip_path)
    finally:
        partial.unlink(missing_ok=True)
    return zip_path


def write_metadata(metadata: ExtractionMetadata, json_path: Path) -> Path:
    json_path.parent.mkdir(parents=True, exist_ok=True)
    json_path.write_text(
        json.dumps(metadata.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
    )
    return json_path
