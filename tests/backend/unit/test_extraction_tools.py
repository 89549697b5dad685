import subprocess

import pytest

from imagex.core.domain.errors import ToolError
from imagex.infrastructure.extraction import image_info, pdf_images, pdf_info


def test_inspect_image_reads_png_header(tmp_path):
    Image = pytest.importorskip("PIL.Image")
    path = tmp_path / "image-000.png"
    Image.new("RGB", (32, 16), color="red").save(path)

    info = image_info.inspect_image(path)
    assert (info.width, info.height, info.format) == (32, 16, "PNG")


def test_inspect_image_rejects_garbage(tmp_path):
    path = tmp_path / "image-001.jpg"
    path.write_bytes(b"definitely not a jpeg")

    with pytest.raises(ToolError) as excinfo:
        image_info.inspect_image(path)
    assert excinfo.value.tool == "pillow"


def _fake_run(files, calls):
    def run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        out_prefix = cmd[-1]
        for name in files:
            with open(f"{out_prefix}{name}", "wb") as fh:
                fh.write(b"data")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    return run


def test_extract_images_keeps_supported_formats_in_order(monkeypatch, tmp_path):
    calls = []
    produced = ["-002.png", "-000.jpg", "-001.tif", "-003.PPM", "-004.jb2e"]
    monkeypatch.setattr(pdf_images.subprocess, "run", _fake_run(produced, calls))

    files = pdf_images.extract_images(tmp_path / "in.pdf", tmp_path / "out", timeout=12)

    assert [f.name for f in files] == ["image-000.jpg", "image-002.png", "image-003.PPM"]
    cmd, kwargs = calls[0]
    assert cmd[1] == "-all"
    assert cmd[-1].endswith("image")
    assert kwargs["timeout"] == 12
    assert kwargs["check"] is True


def test_extract_images_orders_past_999_by_running_number(monkeypatch, tmp_path):
    produced = [f"-{idx:03d}.png" for idx in range(1003)]
    monkeypatch.setattr(pdf_images.subprocess, "run", _fake_run(reversed(produced), []))

    files = pdf_images.extract_images(tmp_path / "in.pdf", tmp_path / "out")

    names = [f.name for f in files]
    assert len(names) == 1003
    assert names[99:102] == ["image-099.png", "image-100.png", "image-101.png"]
    assert names[998:] == ["image-998.png", "image-999.png", "image-1000.png", "image-1001.png", "image-1002.png"]


@pytest.mark.parametrize(
    "error, expected",
    [
        (FileNotFoundError("pdfimages"), "binary not found"),
        (subprocess.TimeoutExpired(["pdfimages"], 5), "timed out"),
        (subprocess.CalledProcessError(1, ["pdfimages"], stderr="Syntax Error"), "Syntax Error"),
        (subprocess.CalledProcessError(99, ["pdfimages"], stderr=""), "exit status 99"),
    ],
)
def test_extract_images_wraps_tool_failures(monkeypatch, tmp_path, error, expected):
    def failing_run(cmd, **kwargs):
        raise error

    monkeypatch.setattr(pdf_images.subprocess, "run", failing_run)

    with pytest.raises(ToolError) as excinfo:
        pdf_images.extract_images(tmp_path / "in.pdf", tmp_path / "out", timeout=5)
    assert excinfo.value.tool == "pdfimages"
    assert expected in str(excinfo.value)


def test_count_pages_uses_pdfplumber(monkeypatch, tmp_path):
    class FakePdf:
        pages = [object(), object(), object()]

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr(pdf_info.pdfplumber, "open", lambda path: FakePdf())
    assert pdf_info.count_pages(tmp_path / "doc.pdf") == 3


def test_count_pages_wraps_parser_errors(monkeypatch, tmp_path):
    def broken_open(path):
        raise ValueError("no trailer")

    monkeypatch.setattr(pdf_info.pdfplumber, "open", broken_open)
    with pytest.raises(ToolError, match="no trailer"):
        pdf_info.count_pages(tmp_path / "doc.pdf")
