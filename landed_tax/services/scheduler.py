from __future__ import annotations

import asyncio
import copy
import inspect
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from landed_tax.core.logging import get_logger

logger = get_logger("scheduler")

ComputeFn = Callable[[], Any]


@dataclass
class ScheduledCalculation:
    identifier: str
    dependency_snapshot: Any
    compute_fn: ComputeFn
    enqueued_at: float


@dataclass
class ExecutionOutcome:
    identifier: str
    result: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SchedulerStats:
    scheduled: int = 0
    skipped_unchanged: int = 0
    replaced: int = 0
    evicted: int = 0
    cancelled: int = 0
    executed: int = 0
    failed: int = 0


class RecalculationScheduler:
    """Debounced, per-identifier recalculation queue.

    All pending entries share one timer; every ``schedule`` that changes the queue
    restarts it. Executions for one identifier never overlap: a new execution
    waits for the in-flight one to finish. Dependency snapshots are recorded only
    after a compute succeeds.
    """

    def __init__(
        self,
        debounce_ms: int = 500,
        max_pending: int = 100,
        max_snapshots: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")
        if max_pending < 1:
            raise ValueError("max_pending must be >= 1")
        if max_snapshots < 1:
            raise ValueError("max_snapshots must be >= 1")
        self.debounce_ms = debounce_ms
        self.max_pending = max_pending
        self.max_snapshots = max_snapshots
        self.clock = clock
        self.stats = SchedulerStats()
        self._pending: dict[str, ScheduledCalculation] = {}
        self._snapshots: dict[str, Any] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._drains: set[asyncio.Task] = set()

    @property
    def pending_identifiers(self) -> list[str]:
        return list(self._pending)

    def is_pending(self, identifier: str) -> bool:
        return identifier in self._pending

    def last_snapshot(self, identifier: str) -> Any:
        return self._snapshots.get(identifier)

    def schedule(self, identifier: str, compute_fn: ComputeFn, dependencies: Any) -> bool:
        """Queue ``compute_fn`` for ``identifier``. Returns False when nothing changed."""
        pending = self._pending.get(identifier)
        if pending is not None:
            if pending.dependency_snapshot == dependencies:
                self.stats.skipped_unchanged += 1
                return False
        elif identifier in self._snapshots and self._snapshots[identifier] == dependencies:
            self.stats.skipped_unchanged += 1
            return False

        if pending is not None:
            del self._pending[identifier]
            self.stats.replaced += 1
        elif len(self._pending) >= self.max_pending:
            self._evict_oldest()

        self._pending[identifier] = ScheduledCalculation(
            identifier=identifier,
            dependency_snapshot=copy.deepcopy(dependencies),
            compute_fn=compute_fn,
            enqueued_at=self.clock(),
        )
        self.stats.scheduled += 1
        self._restart_timer()
        return True

    def cancel(self, identifier: str) -> bool:
        entry = self._pending.pop(identifier, None)
        if entry is None:
            return False
        self.stats.cancelled += 1
        if not self._pending:
            self._stop_timer()
        return True

    def forget(self, identifier: str) -> None:
        """Drop the recorded snapshot so the next schedule always runs."""
        self._snapshots.pop(identifier, None)

    async def flush(self) -> dict[str, ExecutionOutcome]:
        self._stop_timer()
        return await self._drain()

    async def wait_idle(self) -> None:
        while self._drains or self._in_flight:
            await asyncio.gather(*self._drains, *self._in_flight.values(), return_exceptions=True)

    async def close(self) -> None:
        self._stop_timer()
        self._pending.clear()
        await self.wait_idle()

    def _record_snapshot(self, identifier: str, snapshot: Any) -> None:
        self._snapshots.pop(identifier, None)
        if len(self._snapshots) >= self.max_snapshots:
            del self._snapshots[next(iter(self._snapshots))]
        self._snapshots[identifier] = snapshot

    def _evict_oldest(self) -> None:
        oldest = min(self._pending.values(), key=lambda entry: entry.enqueued_at)
        del self._pending[oldest.identifier]
        self.stats.evicted += 1
        logger.warning(
            "scheduler_queue_overflow",
            evicted=oldest.identifier,
            max_pending=self.max_pending,
        )

    def _restart_timer(self) -> None:
        self._stop_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_ms / 1000, self._on_timer)

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self._drain())
        self._drains.add(task)
        task.add_done_callback(self._drains.discard)

    async def _drain(self) -> dict[str, ExecutionOutcome]:
        entries = list(self._pending.values())
        self._pending.clear()
        if not entries:
            return {}
        tasks = [self._start(entry) for entry in entries]
        outcomes = await asyncio.gather(*tasks)
        return {outcome.identifier: outcome for outcome in outcomes}

    def _start(self, entry: ScheduledCalculation) -> asyncio.Task:
        previous = self._in_flight.get(entry.identifier)
        task = asyncio.get_running_loop().create_task(self._execute(entry, previous))
        self._in_flight[entry.identifier] = task

        def _clear(done: asyncio.Task) -> None:
            if self._in_flight.get(entry.identifier) is done:
                del self._in_flight[entry.identifier]

        task.add_done_callback(_clear)
        return task

    async def _execute(self, entry: ScheduledCalculation, previous: asyncio.Task | None) -> ExecutionOutcome:
        if previous is not None and not previous.done():
            await asyncio.gather(previous, return_exceptions=True)
        try:
            result = entry.compute_fn()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            self.stats.failed += 1
            logger.exception("scheduled_calculation_failed", identifier=entry.identifier)
            outcome = ExecutionOutcome(entry.identifier, error=exc)
        else:
            self.stats.executed += 1
            self._record_snapshot(entry.identifier, entry.dependency_snapshot)
            outcome = ExecutionOutcome(entry.identifier, result=result)
        return outcome
