import os

from celery import Celery

BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0")
RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", BROKER_URL)
WORKER_CONCURRENCY = int(os.environ.get("CELERY_CONCURRENCY", "2"))
TASK_TIME_LIMIT = int(os.environ.get("CELERY_TASK_TIME_LIMIT", "1800"))
TASK_SOFT_TIME_LIMIT = int(os.environ.get("CELERY_TASK_SOFT_TIME_LIMIT", "1740"))
# Pillow and large pdfimages runs leave fragmented heaps behind; recycle worker processes.
MAX_TASKS_PER_CHILD = int(os.environ.get("CELERY_MAX_TASKS_PER_CHILD", "50"))
RESULT_EXPIRES_SECONDS = int(os.environ.get("CELERY_RESULT_EXPIRES", "86400"))

EXTRACT_TASK = "imagex.extract_images"
EXTRACT_QUEUE = os.environ.get("CELERY_EXTRACT_QUEUE", "extract")

celery_app = Celery(
    "imagex",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
)

celery_app.conf.update(
    task_routes={EXTRACT_TASK: {"queue": EXTRACT_QUEUE}},
    task_default_queue=EXTRACT_QUEUE,
    # Tasks carry only a job id and an upload path; the job record lives in Postgres.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=RESULT_EXPIRES_SECONDS,
    worker_concurrency=WORKER_CONCURRENCY,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=MAX_TASKS_PER_CHILD,
    task_acks_late=True,
    # A killed worker requeues the job; the pipeline skips it if it already started.
    task_reject_on_worker_lost=True,
    broker_connection_retry_on_startup=True,
    task_time_limit=TASK_TIME_LIMIT,
    task_soft_time_limit=TASK_SOFT_TIME_LIMIT,
)

celery_app.autodiscover_tasks(["imagex.interfaces.worker"])
