from __future__ import annotations

from collections.abc import Awaitable, Callable

from .backfill_task import backfill_task
from .serve_task import serve_task
from .stats_task import stats_task

TaskFn = Callable[..., Awaitable[None]]

TASKS: dict[str, TaskFn] = {
    "serve": serve_task,
    "backfill": backfill_task,
    "stats": stats_task,
}
