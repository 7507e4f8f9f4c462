import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from django.conf import settings
from django.db import transaction
from django.utils.module_loading import import_string

_executor = ThreadPoolExecutor(max_workers=2)
logger = logging.getLogger(__name__)

ASYNC_MODES = ("redis", "inprocess", "inline", "manual")


def async_mode() -> str:
    mode = str(getattr(settings, "PIPELINE_ASYNC_MODE", "") or "").strip().lower()
    if mode in ASYNC_MODES:
        return mode
    return "inprocess" if settings.DEBUG else "redis"


def _enqueue_job(func_path: str, *args) -> str:
    import redis
    from rq import Queue

    queue = Queue("default", connection=redis.Redis.from_url(settings.PIPELINE_JOBS_REDIS_URL))
    job = queue.enqueue(func_path, *args, job_timeout=settings.PIPELINE_JOB_TIMEOUT_SECONDS)
    return job.id


def dispatch(func_path: str, *args) -> str:
    """Run a worker task in the background according to PIPELINE_ASYNC_MODE.

    ``manual`` returns an id without running anything; callers (tests, the
    run_build_job command) then drive the task themselves.
    """
    mode = async_mode()
    if mode == "redis":
        return _enqueue_job(func_path, *args)
    job_id = str(uuid.uuid4())
    if mode == "manual":
        return job_id
    func = import_string(func_path)
    if mode == "inline":
        func(*args)
    else:
        _executor.submit(func, *args)
    return job_id


def dispatch_on_commit(func_path: str, *args, on_dispatched: Optional[Callable[[str], None]] = None) -> None:
    def _run():
        try:
            job_id = dispatch(func_path, *args)
        except Exception:
            logger.exception("dispatch failed task=%s args=%s", func_path, args)
            return
        logger.info("dispatched task=%s args=%s id=%s mode=%s", func_path, args, job_id, async_mode())
        if on_dispatched:
            on_dispatched(job_id)

    transaction.on_commit(_run)
