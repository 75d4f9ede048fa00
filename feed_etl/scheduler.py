"""Bounded-concurrency batch execution with per-task isolation."""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    AsyncContextManager,
    Awaitable,
    Callable,
    Generic,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from .driver import PageDriver
from .errors import classify
from .models import WorkUnit

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TASK_TIMEOUT = "task_timeout"
NO_RESULT = "no_result"


class TaskState(str, Enum):
    """Lifecycle of one task."""

    PENDING = "pending"
    NAVIGATING = "navigating"
    SETTLING = "settling"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ProductTask(Generic[T]):
    """One work unit plus its outcome; each task writes only to itself."""

    index: int
    unit: WorkUnit
    state: TaskState = TaskState.PENDING
    result: Optional[T] = None
    error: Optional[str] = None
    error_detail: Optional[str] = None
    elapsed: float = 0.0

    def advance(self, state: TaskState) -> None:
        LOGGER.debug("task %d %s -> %s", self.index, self.state.value, state.value)
        self.state = state

    def fail(self, code: str, detail: str = "") -> None:
        self.error = code
        self.error_detail = detail or None
        self.advance(TaskState.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.state == TaskState.DONE


@dataclass
class RunReport(Generic[T]):
    tasks: List[ProductTask[T]] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for t in self.tasks if t.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tasks if t.state == TaskState.FAILED)

    def results(self) -> List[T]:
        return [t.result for t in self.tasks if t.succeeded and t.result is not None]

    def failures(self) -> List[ProductTask[T]]:
        return [t for t in self.tasks if t.state == TaskState.FAILED]


ContextFactory = Callable[[], AsyncContextManager[PageDriver]]
Handler = Callable[[ProductTask[T], PageDriver], Awaitable[Optional[T]]]
ProgressCallback = Callable[[int, int, RunReport[Any]], None]


class TaskScheduler:
    """Run handlers over work units in sequential batches of ``concurrency``.

    Inside a batch every task runs concurrently with its own driver context;
    the next batch starts only after the previous one has fully drained. A
    failing task is recorded and never affects its siblings.
    """

    def __init__(
        self,
        concurrency: int = 6,
        *,
        task_timeout: float = 120.0,
        pause_between_batches: Tuple[float, float] = (0.0, 0.0),
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.task_timeout = task_timeout
        self.pause_between_batches = pause_between_batches
        self.progress_callback = progress_callback

    async def run(
        self,
        units: Sequence[WorkUnit],
        context_factory: ContextFactory,
        handler: Handler[T],
    ) -> RunReport[T]:
        report: RunReport[T] = RunReport([ProductTask(i, unit) for i, unit in enumerate(units)])
        total = len(report.tasks)
        LOGGER.info("Scheduling %d task(s), concurrency=%d", total, self.concurrency)

        for batch_start in range(0, total, self.concurrency):
            batch_end = min(batch_start + self.concurrency, total)
            batch = report.tasks[batch_start:batch_end]

            await asyncio.gather(*(self._run_task(t, context_factory, handler) for t in batch))

            ok = sum(1 for t in batch if t.succeeded)
            LOGGER.info(
                "Batch %d done: tasks %d-%d, succeeded=%d, failed=%d",
                batch_start // self.concurrency + 1,
                batch_start + 1,
                batch_end,
                ok,
                len(batch) - ok,
            )
            if self.progress_callback:
                self.progress_callback(batch_end, total, report)

            if batch_end < total:
                await self._pause()

        LOGGER.info("Run complete: succeeded=%d, failed=%d", report.succeeded, report.failed)
        return report

    async def _run_task(
        self, task: ProductTask[T], context_factory: ContextFactory, handler: Handler[T]
    ) -> None:
        started = time.monotonic()
        try:
            async with context_factory() as driver:
                result = await asyncio.wait_for(handler(task, driver), timeout=self.task_timeout)
            if result is None:
                task.fail(NO_RESULT)
            else:
                task.result = result
                task.advance(TaskState.DONE)
        except asyncio.TimeoutError:
            stage = task.state.value
            task.fail(TASK_TIMEOUT, f"exceeded {self.task_timeout:.0f}s while {stage}")
            LOGGER.warning("Task %d timed out while %s: %s", task.index, stage, task.unit.source_url)
        except Exception as exc:
            task.fail(classify(exc), str(exc))
            LOGGER.warning("Task %d failed (%s): %s", task.index, task.error, task.unit.source_url)
            LOGGER.debug("Task %d failure detail", task.index, exc_info=True)
        finally:
            task.elapsed = time.monotonic() - started

    async def _pause(self) -> None:
        low, high = self.pause_between_batches
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))
