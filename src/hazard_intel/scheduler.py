"""Scheduling utilities for periodic collection cycles."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.schedulers.blocking import BlockingScheduler

_log = logging.getLogger(__name__)


@dataclass
class SchedulerOptions:
    interval_minutes: int
    max_runs: int | None = None


def _run_guarded(run_cycle: Callable[[], Any]) -> None:
    # A failing cycle is logged; the next interval still fires.
    try:
        result = run_cycle()
        if inspect.isawaitable(result):
            asyncio.run(_await(result))
    except Exception:
        _log.exception("Collection cycle failed")


async def _await(awaitable: Any) -> Any:
    return await awaitable


def start_scheduler(run_cycle: Callable[[], Any], options: SchedulerOptions) -> None:
    """Run ``run_cycle`` now and then every ``interval_minutes`` until ``max_runs``.

    ``run_cycle`` may be a plain function or return a coroutine; coroutines
    are driven to completion on a fresh event loop per run.
    """
    if options.max_runs == 1:
        _run_guarded(run_cycle)
        return

    scheduler = BlockingScheduler()
    run_counter = {"count": 0}

    def job_wrapper() -> None:
        _run_guarded(run_cycle)
        run_counter["count"] += 1
        if options.max_runs is not None and run_counter["count"] >= options.max_runs:
            try:
                scheduler.shutdown(wait=False)
            except SchedulerNotRunningError:
                pass

    scheduler.add_job(job_wrapper, "interval", minutes=options.interval_minutes, id="collection_cycle")
    job_wrapper()
    if options.max_runs is None or run_counter["count"] < options.max_runs:
        scheduler.start()
