"""Bounded-concurrency executor with a priority queue, timeouts and retries."""

import asyncio
import heapq
import itertools
import math
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Literal, Optional, Sequence

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 20
DEFAULT_RETRIES = 2
DEFAULT_TIMEOUT = 30.0
DEFAULT_BASE_DELAY = 0.5

TaskStatus = Literal["queued", "running", "completed", "failed", "cancelled"]
Worker = Callable[[Any], Awaitable[Any]]


class TaskTimeoutError(asyncio.TimeoutError):
    """A single attempt exceeded its timeout."""

    def __init__(self, task_id: str, timeout: float):
        super().__init__(f"Task {task_id} timed out after {timeout}s")
        self.task_id = task_id
        self.timeout = timeout


class TaskFailedError(Exception):
    """A task failed on every attempt. ``cause`` is the last error."""

    def __init__(self, task_id: str, attempts: int, cause: BaseException):
        super().__init__(f"Task {task_id} failed after {attempts} attempt(s): {cause}")
        self.task_id = task_id
        self.attempts = attempts
        self.cause = cause


@dataclass
class ParallelTask:
    """
    A queued unit of work.

    Fields:
        id: Unique task identifier
        priority: Higher runs first
        input: Argument passed to the worker
        retries: Retries allowed after the first attempt
        timeout: Seconds allowed per attempt
        sequence: Insertion order, breaks priority ties FIFO
    """

    id: str
    priority: int
    input: Any
    worker: Worker
    retries: int
    timeout: float
    sequence: int
    future: asyncio.Future
    run_id: int = 0
    status: TaskStatus = "queued"
    result: Any = None
    error: Optional[str] = None
    attempts: int = 0
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def __lt__(self, other: "ParallelTask") -> bool:
        if self.priority != other.priority:
            return self.priority > other.priority
        return self.sequence < other.sequence


@dataclass
class ExecutionMetrics:
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_task_time: float = 0.0
    parallel_efficiency: float = 0.0
    retry_count: int = 0


@dataclass
class _TimingTotals:
    """Running totals over settled tasks."""

    count: int = 0
    total_duration: float = 0.0
    first_start: float = math.inf
    last_end: float = -math.inf

    def add(self, task: ParallelTask) -> None:
        if task.start_time is None or task.end_time is None:
            return
        self.count += 1
        self.total_duration += task.end_time - task.start_time
        self.first_start = min(self.first_start, task.start_time)
        self.last_end = max(self.last_end, task.end_time)


@dataclass
class TaskError:
    """Failure of the input at ``index``."""

    index: int
    error: BaseException


@dataclass
class ExecutionResult:
    """Results in input order (``None`` for failed slots) plus indexed errors."""

    results: list[Any] = field(default_factory=list)
    errors: list[TaskError] = field(default_factory=list)


class ParallelExecutor:
    """
    Runs async workers over many inputs with at most ``max_concurrency`` in flight.

    Queued tasks are ordered by priority, then insertion order. Every attempt
    is bounded by ``asyncio.wait_for``; failures are retried with exponential
    backoff ``base_delay * 2**attempt``. Metrics are recomputed after each
    completion and pushed to subscribers.
    """

    def __init__(self, max_concurrency: int = 5, base_delay: float = DEFAULT_BASE_DELAY):
        self.max_concurrency = _clamp_concurrency(max_concurrency)
        self.base_delay = base_delay
        self._heap: list[ParallelTask] = []
        self._running: dict[str, tuple[ParallelTask, asyncio.Task]] = {}
        self._timing = _TimingTotals()
        self._sequence = itertools.count()
        self._run_id = 0
        self._metrics = ExecutionMetrics()
        self._listeners: list[Callable[[ExecutionMetrics], None]] = []
        self.logger = logger.bind(component="ParallelExecutor")

    def enqueue(
        self,
        input: Any,
        worker: Worker,
        priority: int = 0,
        retries: int = DEFAULT_RETRIES,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> asyncio.Future:
        """
        Queue one input.

        Args:
            input: Worker argument
            worker: Async callable applied to ``input``
            priority: Higher is dequeued first
            retries: Retries after the first attempt
            timeout: Seconds per attempt

        Returns:
            Future resolving to the worker result, or failing with
            TaskTimeoutError / TaskFailedError
        """
        return self._submit(input, worker, priority, retries, timeout, self._run_id)

    def _submit(
        self,
        input: Any,
        worker: Worker,
        priority: int,
        retries: int,
        timeout: float,
        run_id: int,
    ) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        task = ParallelTask(
            id=f"task-{uuid.uuid4().hex[:8]}",
            priority=priority,
            input=input,
            worker=worker,
            retries=max(0, retries),
            timeout=timeout,
            sequence=next(self._sequence),
            future=future,
            run_id=run_id,
        )
        future.add_done_callback(lambda f, t=task: self._on_future_done(t, f))
        heapq.heappush(self._heap, task)
        self._metrics.total_tasks += 1
        self._pump()
        return future

    def _on_future_done(self, task: ParallelTask, future: asyncio.Future) -> None:
        # Caller gave up on the result: stop the worker too
        if future.cancelled() and task.id in self._running:
            self._running[task.id][1].cancel()

    def _pump(self) -> None:
        while len(self._running) < self.max_concurrency and self._heap:
            task = heapq.heappop(self._heap)
            if task.future.done():
                continue
            task.status = "running"
            runner = asyncio.create_task(self._run(task))
            self._running[task.id] = (task, runner)

    async def _run(self, task: ParallelTask) -> None:
        task.start_time = time.monotonic()
        try:
            result = await self._attempt(task)
        except asyncio.CancelledError:
            task.status = "cancelled"
            if not task.future.done():
                task.future.cancel()
            raise
        except TaskTimeoutError as e:
            self._fail(task, e)
        except Exception as e:
            self._fail(task, TaskFailedError(task.id, task.attempts, e))
        else:
            task.status = "completed"
            task.result = result
            self._metrics.completed_tasks += 1
            if not task.future.done():
                task.future.set_result(result)
        finally:
            task.end_time = time.monotonic()
            self._running.pop(task.id, None)
            self._timing.add(task)
            self._update_metrics()
            self._pump()

    async def _attempt(self, task: ParallelTask) -> Any:
        def _count_retry(retry_state: RetryCallState) -> None:
            self._metrics.retry_count += 1
            self.logger.debug(
                f"Retrying {task.id} (attempt {retry_state.attempt_number + 1}/{task.retries + 1}): "
                f"{retry_state.outcome.exception()}"
            )

        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(task.retries + 1),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2),
            before_sleep=_count_retry,
            reraise=True,
        ):
            with attempt:
                task.attempts += 1
                try:
                    result = await asyncio.wait_for(task.worker(task.input), timeout=task.timeout)
                except asyncio.TimeoutError as e:
                    raise TaskTimeoutError(task.id, task.timeout) from e
        return result

    def _fail(self, task: ParallelTask, error: BaseException) -> None:
        task.status = "failed"
        task.error = str(error)
        self._metrics.failed_tasks += 1
        self.logger.warning(f"Task {task.id} failed: {error}")
        if not task.future.done():
            task.future.set_exception(error)

    async def execute_all(
        self,
        inputs: Sequence[Any],
        worker: Worker,
        priority: int = 0,
        retries: int = DEFAULT_RETRIES,
        timeout: float = DEFAULT_TIMEOUT,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> ExecutionResult:
        """
        Run ``worker`` over every input and wait for all of them.

        Outstanding tasks of a previous run are cancelled first.

        Args:
            inputs: Worker arguments
            worker: Async callable
            priority: Priority for every task of this run
            retries: Retries per task
            timeout: Seconds per attempt
            on_progress: Called with (completed, total) after each task settles

        Returns:
            ExecutionResult with results in input order and indexed errors
        """
        self.cancel()
        self._run_id += 1
        run_id = self._run_id
        total = len(inputs)
        completed = 0

        def _progress(_: asyncio.Future) -> None:
            nonlocal completed
            completed += 1
            if on_progress:
                on_progress(completed, total)

        futures = []
        for item in inputs:
            future = self._submit(item, worker, priority, retries, timeout, run_id)
            future.add_done_callback(_progress)
            futures.append(future)

        outcomes = await asyncio.gather(*futures, return_exceptions=True)

        result = ExecutionResult(results=[None] * total)
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                result.errors.append(TaskError(index=index, error=outcome))
            else:
                result.results[index] = outcome

        self.logger.info(
            f"Run {run_id} finished: {total - len(result.errors)}/{total} succeeded"
        )
        return result

    async def execute_batched(
        self,
        inputs: Sequence[Any],
        worker: Worker,
        batch_size: int = 10,
        on_batch_complete: Optional[Callable[[int, list[Any]], None]] = None,
        **options: Any,
    ) -> list[Any]:
        """
        Run ``execute_all`` over consecutive chunks of ``inputs``.

        Returns:
            Concatenated results in input order
        """
        batch_size = max(1, batch_size)
        all_results: list[Any] = []
        for start in range(0, len(inputs), batch_size):
            batch = inputs[start:start + batch_size]
            outcome = await self.execute_all(batch, worker, **options)
            all_results.extend(outcome.results)
            if on_batch_complete:
                on_batch_complete(start // batch_size, outcome.results)
        return all_results

    def _update_metrics(self) -> None:
        timing = self._timing
        if timing.count:
            self._metrics.average_task_time = timing.total_duration / timing.count
            span = timing.last_end - timing.first_start
            self._metrics.parallel_efficiency = (
                min(1.0, timing.total_duration / (span * self.max_concurrency)) if span > 0 else 0.0
            )
        self._notify()

    def _notify(self) -> None:
        snapshot = self.get_metrics()
        for listener in list(self._listeners):
            listener(snapshot)

    def get_metrics(self) -> ExecutionMetrics:
        return replace(self._metrics)

    def subscribe(self, listener: Callable[[ExecutionMetrics], None]) -> Callable[[], None]:
        """Register a metrics listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def set_concurrency(self, level: int) -> None:
        self.max_concurrency = _clamp_concurrency(level)
        self.logger.info(f"Concurrency set to {self.max_concurrency}")
        self._pump()

    def get_queue_status(self) -> dict[str, int]:
        return {
            "queued": sum(1 for t in self._heap if not t.future.done()),
            "running": len(self._running),
            "completed": self._metrics.completed_tasks,
            "failed": self._metrics.failed_tasks,
        }

    def cancel(self) -> int:
        """
        Cancel all queued and running tasks.

        Returns:
            Number of tasks cancelled
        """
        cancelled = 0
        while self._heap:
            task = heapq.heappop(self._heap)
            if not task.future.done():
                task.status = "cancelled"
                task.future.cancel()
                cancelled += 1
        for task, runner in list(self._running.values()):
            runner.cancel()
            if not task.future.done():
                task.future.cancel()
            cancelled += 1
        if cancelled:
            self.logger.info(f"Cancelled {cancelled} outstanding task(s)")
        return cancelled

    def reset(self) -> None:
        """Cancel outstanding work and zero the metrics."""
        self.cancel()
        self._timing = _TimingTotals()
        self._metrics = ExecutionMetrics()
        self._notify()


def _clamp_concurrency(level: int) -> int:
    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, int(level)))
