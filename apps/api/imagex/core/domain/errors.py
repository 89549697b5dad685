class ExtractionError(Exception):
    """Stage failure inside the extraction pipeline."""


class NoImagesFoundError(ExtractionError):
    def __init__(self, message: str = "No images found in PDF") -> None:
        super().__init__(message)


class ToolError(ExtractionError):
    """An external tool (pdfimages, pdfplumber, Pillow) failed or timed out."""

    def __init__(self, tool: str, message: str) -> None:
        self.tool = tool
        super().__init__(f"{tool}: {message}")


class UploadTooLargeError(ValueError):
    pass


class ArtifactNotFoundError(LookupError):
    pass
