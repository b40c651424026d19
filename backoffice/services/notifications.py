"""
Fire-and-forget dispatch of blocking side effects
"""
import logging
from typing import Callable

from fastapi import BackgroundTasks
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


async def _run(send_fn: Callable, params: dict) -> None:
    name = getattr(send_fn, "__name__", repr(send_fn))
    try:
        ok = await run_in_threadpool(send_fn, **params)
    except Exception:
        logger.exception(f"Background task {name} failed")
        return
    if ok is False:
        logger.warning(f"Background task {name} reported failure")


def dispatch(background_tasks: BackgroundTasks, send_fn: Callable, **params) -> None:
    """Queue send_fn(**params) to run after the response is sent"""
    background_tasks.add_task(_run, send_fn, params)
