"""
Periodic and background task helpers.

PeriodicTask runs a coroutine function on a fixed interval until stopped.
An exception in one run is logged and the next run proceeds.

BackgroundTasks spawns one-off operator actions (claim sweep, approval)
and keeps a pollable record of each task's outcome, so the eventual
result or error is never lost when the caller returns immediately.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

log = structlog.get_logger()


class PeriodicTask:
    """Cancellable periodic runner.

    Usage:
        task = PeriodicTask("scan", 5.0, scheduler.tick)
        task.start()
        ...
        await task.stop()
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[Any]],
        run_immediately: bool = True,
    ) -> None:
        self._name = name
        self._interval = interval_seconds
        self._func = func
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._runs = 0
        self._errors = 0
        self._log = log.bind(component="periodic_task", task=name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def runs(self) -> int:
        return self._runs

    @property
    def errors(self) -> int:
        return self._errors

    def set_interval(self, interval_seconds: float) -> None:
        """Change the interval; applies after the current sleep."""
        self._interval = interval_seconds

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self._name}")
        self._log.info("periodic_task_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._log.info("periodic_task_stopped", runs=self._runs, errors=self._errors)

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self._interval)
        while True:
            try:
                await self._func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._errors += 1
                self._log.error("periodic_task_error", error=str(e), exc_info=True)
            self._runs += 1
            await asyncio.sleep(self._interval)


class TaskState(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskRecord:
    """Pollable outcome of a background task."""

    task_id: str
    name: str
    state: TaskState = TaskState.RUNNING
    result: Any = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.state != TaskState.RUNNING

    def to_dict(self) -> dict[str, Any]:
        result = self.result
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        return {
            "task_id": self.task_id,
            "name": self.name,
            "state": self.state.value,
            "result": result,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class BackgroundTasks:
    """Registry of spawned one-off tasks with completion/error records."""

    def __init__(self, max_records: int = 50) -> None:
        self._records: dict[str, TaskRecord] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._max_records = max_records
        self._log = log.bind(component="background_tasks")

    def spawn(self, name: str, coro: Awaitable[Any]) -> TaskRecord:
        """Start coro in the background and return its record."""
        task_id = f"{name}-{uuid.uuid4().hex[:8]}"
        record = TaskRecord(task_id=task_id, name=name)
        self._records[task_id] = record
        self._tasks[task_id] = asyncio.create_task(self._run(record, coro), name=task_id)
        self._prune()
        self._log.info("background_task_spawned", task_id=task_id)
        return record

    async def _run(self, record: TaskRecord, coro: Awaitable[Any]) -> None:
        try:
            record.result = await coro
            record.state = TaskState.SUCCEEDED
            self._log.info("background_task_succeeded", task_id=record.task_id)
        except asyncio.CancelledError:
            record.state = TaskState.CANCELLED
            raise
        except Exception as e:
            record.state = TaskState.FAILED
            record.error = str(e)
            self._log.error(
                "background_task_failed",
                task_id=record.task_id,
                error=str(e),
                exc_info=True,
            )
        finally:
            record.finished_at = datetime.now(timezone.utc)
            self._tasks.pop(record.task_id, None)

    def get(self, task_id: str) -> Optional[TaskRecord]:
        return self._records.get(task_id)

    def records(self) -> list[TaskRecord]:
        return sorted(self._records.values(), key=lambda r: r.started_at, reverse=True)

    def is_active(self, name: str) -> bool:
        return any(
            r.name == name and not r.done for r in self._records.values()
        )

    async def wait(self, task_id: str) -> Optional[TaskRecord]:
        """Wait for a task to finish (used by the CLI and tests)."""
        task = self._tasks.get(task_id)
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        return self._records.get(task_id)

    async def cancel_all(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        for task in list(self._tasks.values()):
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _prune(self) -> None:
        finished = [r for r in self.records() if r.done]
        excess = len(self._records) - self._max_records
        for record in reversed(finished):
            if excess <= 0:
                break
            del self._records[record.task_id]
            excess -= 1
