import os
from typing import Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool


DATABASE_URL = os.environ.get("DATABASE_URL")
POOL_MAX_SIZE = int(os.environ.get("DATABASE_POOL_MAX_SIZE", "5"))
APPLICATION_NAME = os.environ.get("DATABASE_APPLICATION_NAME", "imagex-jobs")
# Job store statements are single-row reads and writes; anything slower is a stuck lock.
STATEMENT_TIMEOUT_MS = int(os.environ.get("DATABASE_STATEMENT_TIMEOUT_MS", "5000"))

pool: Optional[ConnectionPool] = None


def _configure_connection(conn) -> None:
    # Job updates commit one statement at a time; no transaction is held between them.
    conn.autocommit = True


def init_pool() -> None:
    global pool
    if pool is not None:
        return
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not set")

    # Pipeline threads each hold a connection only for a single statement.
    pool = ConnectionPool(
        conninfo=DATABASE_URL,
        name="imagex-job-store",
        min_size=1,
        max_size=POOL_MAX_SIZE,
        max_idle=5,
        timeout=10,
        configure=_configure_connection,
        # Workers keep the pool open across long extractions; re-check before handing out.
        check=ConnectionPool.check_connection,
        kwargs={
            "row_factory": dict_row,
            "application_name": APPLICATION_NAME,
            "options": f"-c statement_timeout={STATEMENT_TIMEOUT_MS}",
        },
    )


def close_pool() -> None:
    global pool
    if pool is not None:
        pool.close()
        pool = None


def get_pool() -> ConnectionPool:
    if pool is None:
        raise RuntimeError("Database pool is not initialized")
    return pool
