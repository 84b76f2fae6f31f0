import asyncio

import pytest

from essaycoach.domain.errors import DomainInvariantError, DomainValidationError
from essaycoach.domain.executor import BoundedTaskExecutor


class _Tracker:
    def __init__(self) -> None:
        self.in_flight = 0
        self.peak = 0

    def factory(self, value: object, *, delay: float = 0.01, fail: bool = False):
        async def _run() -> object:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            try:
                await asyncio.sleep(delay)
                if fail:
                    raise RuntimeError(f"boom {value}")
                return value
            finally:
                self.in_flight -= 1

        return _run


@pytest.mark.unit
@pytest.mark.parametrize("max_concurrency", [1, 2, 3])
def test_in_flight_tasks_never_exceed_bound(max_concurrency: int) -> None:
    tracker = _Tracker()
    executor = BoundedTaskExecutor(max_concurrency)
    for index in range(7):
        executor.add_task(f"t{index}", tracker.factory(index))

    asyncio.run(executor.execute_all())

    assert tracker.peak == max_concurrency
    assert executor.peak_in_flight == max_concurrency
    assert executor.results() == {f"t{index}": index for index in range(7)}


@pytest.mark.unit
def test_failing_task_does_not_stop_siblings() -> None:
    tracker = _Tracker()
    executor = BoundedTaskExecutor(2)
    executor.add_task("ok-1", tracker.factory("a"))
    executor.add_task("bad", tracker.factory("b", fail=True))
    executor.add_task("ok-2", tracker.factory("c"))

    asyncio.run(executor.execute_all())

    assert executor.get_result("ok-1") == "a"
    assert executor.get_result("ok-2") == "c"
    assert executor.get_result("bad") is None
    assert isinstance(executor.get_error("bad"), RuntimeError)
    assert executor.get_error("ok-1") is None
    stats = executor.stats()
    assert (stats.total_tasks, stats.completed_tasks, stats.failed_tasks) == (3, 2, 1)
    assert (stats.running_tasks, stats.queued_tasks) == (0, 0)


@pytest.mark.unit
def test_settled_callback_fires_once_per_task() -> None:
    settled: list[tuple[str, bool]] = []
    tracker = _Tracker()
    executor = BoundedTaskExecutor(2, on_settled=lambda task_id, ok: settled.append((task_id, ok)))
    executor.add_task("a", tracker.factory(1))
    executor.add_task("b", tracker.factory(2, fail=True))

    asyncio.run(executor.execute_all())

    assert sorted(settled) == [("a", True), ("b", False)]


@pytest.mark.unit
def test_settled_callback_errors_are_contained() -> None:
    def _explode(task_id: str, ok: bool) -> None:
        raise ValueError("callback failure")

    tracker = _Tracker()
    executor = BoundedTaskExecutor(1, on_settled=_explode)
    executor.add_task("a", tracker.factory(1))

    asyncio.run(executor.execute_all())

    assert executor.get_result("a") == 1


@pytest.mark.unit
@pytest.mark.parametrize("value", [0, -1, True, 1.5, "2"])
def test_invalid_max_concurrency_is_rejected(value: object) -> None:
    with pytest.raises(DomainValidationError):
        BoundedTaskExecutor(value)  # type: ignore[arg-type]


@pytest.mark.unit
def test_duplicate_task_id_is_rejected() -> None:
    executor = BoundedTaskExecutor(1)
    executor.add_task("same", _Tracker().factory(1))
    with pytest.raises(DomainInvariantError):
        executor.add_task("same", _Tracker().factory(2))


@pytest.mark.unit
def test_tasks_cannot_be_added_after_execution_started() -> None:
    executor = BoundedTaskExecutor(1)
    executor.add_task("a", _Tracker().factory(1))
    asyncio.run(executor.execute_all())

    with pytest.raises(DomainInvariantError):
        executor.add_task("b", _Tracker().factory(2))
    with pytest.raises(DomainInvariantError):
        asyncio.run(executor.execute_all())


@pytest.mark.unit
def test_empty_executor_completes_immediately() -> None:
    executor = BoundedTaskExecutor(3)
    asyncio.run(executor.execute_all())
    assert executor.results() == {}
    assert executor.peak_in_flight == 0


@pytest.mark.unit
def test_cancelling_execute_all_cancels_in_flight_tasks() -> None:
    started = []

    def _slow(task_id: str):
        async def _run() -> None:
            started.append(task_id)
            await asyncio.sleep(10)

        return _run

    async def _scenario() -> BoundedTaskExecutor:
        executor = BoundedTaskExecutor(2)
        for task_id in ("a", "b", "c"):
            executor.add_task(task_id, _slow(task_id))
        runner = asyncio.create_task(executor.execute_all())
        await asyncio.sleep(0.05)
        runner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await runner
        return executor

    executor = asyncio.run(_scenario())

    assert started == ["a", "b"]
    assert executor.stats().running_tasks == 0
