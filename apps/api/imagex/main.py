import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from imagex.application.extraction_service import ExtractionPipeline
from imagex.application.job_runner import JobRunner, ThreadJobRunner
from imagex.infrastructure.db import connection as db
from imagex.infrastructure.db.job_store import JobStore, build_job_store
from imagex.interfaces.api.routers import extract, jobs

logger = logging.getLogger(__name__)

JOB_STORE_BACKEND = os.environ.get("JOB_STORE_BACKEND", "memory")
JOB_RUNNER = os.environ.get("JOB_RUNNER", "thread")


def build_runner(kind: str, store: JobStore, backend: str) -> JobRunner:
    if kind == "thread":
        return ThreadJobRunner(ExtractionPipeline(store))
    if kind == "celery":
        if backend != "postgres":
            # The worker process cannot see an in-memory store.
            raise RuntimeError("JOB_RUNNER=celery requires JOB_STORE_BACKEND=postgres")
        from imagex.interfaces.worker.tasks import CeleryJobRunner

        return CeleryJobRunner()
    raise ValueError(f"Unknown job runner: {kind}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = build_job_store(JOB_STORE_BACKEND)
    runner = build_runner(JOB_RUNNER, store, JOB_STORE_BACKEND)
    app.state.job_store = store
    app.state.job_runner = runner
    logger.info("imagex started (store=%s, runner=%s)", JOB_STORE_BACKEND, JOB_RUNNER)
    try:
        yield
    finally:
        runner.shutdown(wait=True)
        db.close_pool()


app = FastAPI(title="imagex PDF image extraction API", version="0.1.0", lifespan=lifespan)

frontend_origin = os.environ.get("FRONTEND_ORIGIN", "http://localhost:5173")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(extract.is_upload_field_error(error) for error in errors):
        return JSONResponse(status_code=400, content={"message": extract.NO_FILE_MESSAGE})
    first = errors[0] if errors else {}
    return JSONResponse(
        status_code=422,
        content={"message": first.get("msg", "Invalid request")},
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


app.include_router(extract.router)
app.include_router(jobs.router)
