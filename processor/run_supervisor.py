"""Background run supervision and bounded fan-out.

``RunSupervisor`` owns the asyncio tasks detached from the HTTP request that
created a run: one task per run id, terminal outcomes recorded when the task
finishes. ``BoundedWorker`` caps how many calls hit a rate-limited dependency
at once.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger

T = TypeVar("T")
R = TypeVar("R")


class RunAlreadyActiveError(RuntimeError):
    """A pipeline for this run id is still executing."""


class BoundedWorker:
    """Run an async function over items with at most ``concurrency`` in flight."""

    def __init__(self, concurrency: int = 1):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency

    async def map(self, fn: Callable[[T], Awaitable[R]], items: Iterable[T]) -> list[R]:
        """Results come back in input order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _run(item: T) -> R:
            async with semaphore:
                return await fn(item)

        return list(await asyncio.gather(*(_run(item) for item in items)))


@dataclass
class RunHandle:
    run_id: str
    task: asyncio.Task

    @property
    def done(self) -> bool:
        return self.task.done()


@dataclass(frozen=True)
class RunOutcome:
    run_id: str
    status: str
    detail: str | None = None


class RunSupervisor:
    """Registry of background pipeline tasks keyed by run id.

    Only the latest ``max_outcomes`` terminal outcomes are kept; older ones are
    evicted first.
    """

    def __init__(self, max_outcomes: int = 1000):
        if max_outcomes < 1:
            raise ValueError("max_outcomes must be >= 1")
        self.max_outcomes = max_outcomes
        self._tasks: dict[str, asyncio.Task] = {}
        self._outcomes: OrderedDict[str, RunOutcome] = OrderedDict()

    def submit(self, run_id: str, coro: Coroutine[Any, Any, RunOutcome]) -> RunHandle:
        """Schedule ``coro`` on the running loop and return immediately."""
        existing = self._tasks.get(run_id)
        if existing is not None and not existing.done():
            coro.close()
            raise RunAlreadyActiveError(f"run {run_id} is already executing")

        task = asyncio.create_task(coro, name=f"run-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda t, rid=run_id: self._record(rid, t))
        logger.debug("[supervisor] run {} submitted ({} active)", run_id, len(self.active_runs()))
        return RunHandle(run_id=run_id, task=task)

    def _record(self, run_id: str, task: asyncio.Task):
        if self._tasks.get(run_id) is task:
            del self._tasks[run_id]

        if task.cancelled():
            outcome = RunOutcome(run_id, "cancelled")
        elif task.exception() is not None:
            exc = task.exception()
            outcome = RunOutcome(run_id, "crashed", str(exc))
            logger.opt(exception=exc).error("[supervisor] run {} crashed", run_id)
        else:
            outcome = task.result()
        self._outcomes[run_id] = outcome
        self._outcomes.move_to_end(run_id)
        while len(self._outcomes) > self.max_outcomes:
            self._outcomes.popitem(last=False)
        logger.info("[supervisor] run {} finished: {}", run_id, outcome.status)

    def outcome(self, run_id: str) -> RunOutcome | None:
        return self._outcomes.get(run_id)

    def active_runs(self) -> list[str]:
        return [rid for rid, t in self._tasks.items() if not t.done()]

    async def wait(self, run_id: str) -> RunOutcome | None:
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._outcomes.get(run_id)

    async def shutdown(self):
        """Cancel whatever is still running (process shutdown)."""
        pending = [t for t in self._tasks.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("[supervisor] cancelled {} unfinished run(s) on shutdown", len(pending))
