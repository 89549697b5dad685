from fastapi import Request

from imagex.application.job_runner import JobRunner
from imagex.infrastructure.db.job_store import JobStore


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_job_runner(request: Request) -> JobRunner:
    return request.app.state.job_runner
