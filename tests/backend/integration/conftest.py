import importlib

import pytest

fastapi = pytest.importorskip("fastapi")
TestClient = pytest.importorskip("fastapi.testclient").TestClient

from imagex.application.extraction_service import ExtractionPipeline
from imagex.application.job_runner import ThreadJobRunner


@pytest.fixture
def app_modules(monkeypatch, tmp_path, store, fake_tools):
    """
    Load the app with an in-memory store and a thread runner over fake tools,
    so requests never touch Postgres, Celery or the poppler binaries.
    """
    app_module = importlib.import_module("imagex.main")
    service = importlib.import_module("imagex.application.extraction_service")

    monkeypatch.setattr(service, "UPLOAD_ROOT", tmp_path / "uploads")

    tools = fake_tools(pages=3, images=5)
    pipeline = ExtractionPipeline(
        store,
        tools=tools.bundle(),
        output_root=tmp_path / "temp",
        archive_root=tmp_path / "artifacts",
    )
    runner = ThreadJobRunner(pipeline, max_workers=1)
    app_module.app.state.job_store = store
    app_module.app.state.job_runner = runner

    yield {
        "app": app_module.app,
        "service": service,
        "store": store,
        "runner": runner,
        "tools": tools,
        "uploads": tmp_path / "uploads",
    }
    runner.shutdown(wait=True)


@pytest.fixture
def client(app_modules):
    return TestClient(app_modules["app"])
