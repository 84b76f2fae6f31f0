from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging

from essaycoach.domain.errors import DomainInvariantError, DomainValidationError

TaskFactory = Callable[[], Awaitable[object]]
SettledCallback = Callable[[str, bool], None]

logger = logging.getLogger("essaycoach.executor")


@dataclass(frozen=True)
class ExecutorStats:
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    running_tasks: int
    queued_tasks: int


class BoundedTaskExecutor:
    """Runs registered coroutine factories with at most ``max_concurrency`` in flight.

    Each task's outcome is recorded against its id; a failing task never stops
    the others and never makes ``execute_all`` raise. Results and errors are
    written only by the scheduling loop, so readers must wait for
    ``execute_all`` to return before calling ``get_result`` / ``get_error``.
    """

    def __init__(self, max_concurrency: int, *, on_settled: SettledCallback | None = None) -> None:
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int) or max_concurrency < 1:
            raise DomainValidationError(f"max_concurrency must be an integer >= 1, got {max_concurrency!r}")
        self.max_concurrency = max_concurrency
        self._on_settled = on_settled
        self._queue: deque[tuple[str, TaskFactory]] = deque()
        self._registered: list[str] = []
        self._running: dict[asyncio.Task[None], str] = {}
        self._results: dict[str, object] = {}
        self._errors: dict[str, BaseException] = {}
        self._started = False
        self.peak_in_flight = 0

    @property
    def task_ids(self) -> list[str]:
        return list(self._registered)

    def add_task(self, task_id: str, factory: TaskFactory) -> None:
        if self._started:
            raise DomainInvariantError("tasks cannot be added after execution started")
        if task_id in self._registered:
            raise DomainInvariantError(f"duplicate task id: {task_id}")
        self._registered.append(task_id)
        self._queue.append((task_id, factory))

    async def execute_all(self) -> None:
        if self._started:
            raise DomainInvariantError("execute_all can only run once per executor")
        self._started = True

        try:
            while self._queue or self._running:
                while self._queue and len(self._running) < self.max_concurrency:
                    task_id, factory = self._queue.popleft()
                    handle = asyncio.create_task(self._run(task_id, factory), name=f"executor:{task_id}")
                    self._running[handle] = task_id
                    self.peak_in_flight = max(self.peak_in_flight, len(self._running))

                done, _ = await asyncio.wait(self._running.keys(), return_when=asyncio.FIRST_COMPLETED)
                for handle in done:
                    task_id = self._running.pop(handle)
                    if task_id not in self._results and task_id not in self._errors:
                        self._errors[task_id] = DomainInvariantError(f"task {task_id} was cancelled")
                    self._notify(task_id)
        except asyncio.CancelledError:
            for handle in self._running:
                handle.cancel()
            await asyncio.gather(*self._running, return_exceptions=True)
            self._running.clear()
            raise

    async def _run(self, task_id: str, factory: TaskFactory) -> None:
        try:
            self._results[task_id] = await factory()
        except Exception as exc:
            self._errors[task_id] = exc

    def _notify(self, task_id: str) -> None:
        if self._on_settled is None:
            return
        try:
            self._on_settled(task_id, task_id in self._results)
        except Exception:
            logger.warning("settled callback failed", extra={"task_id": task_id}, exc_info=True)

    def get_result(self, task_id: str) -> object | None:
        return self._results.get(task_id)

    def get_error(self, task_id: str) -> BaseException | None:
        return self._errors.get(task_id)

    def has_result(self, task_id: str) -> bool:
        return task_id in self._results

    def results(self) -> dict[str, object]:
        return dict(self._results)

    def errors(self) -> dict[str, BaseException]:
        return dict(self._errors)

    def stats(self) -> ExecutorStats:
        return ExecutorStats(
            total_tasks=len(self._registered),
            completed_tasks=len(self._results),
            failed_tasks=len(self._errors),
            running_tasks=len(self._running),
            queued_tasks=len(self._queue),
        )
