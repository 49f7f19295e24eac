"""Domain models for the persisted task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dt_queue.queue.variables import ParamBinding, parse_params


class TaskStatus(str, Enum):
    """Per-task lifecycle states; everything except PENDING is terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class QueueStatus(str, Enum):
    """Queue-level lifecycle states."""

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ClearScope(str, Enum):
    """Which tasks `clear` removes."""

    COMPLETED = "completed"
    FAILED = "failed"
    ALL = "all"


@dataclass(slots=True)
class QueueOptions:
    """Execution options stored with the queue document."""

    mode: str = "sequential"
    stop_on_error: bool = True
    rollback_on_error: bool = False
    validate_before_execute: bool = True
    verbose: bool = False


@dataclass(slots=True)
class QueueSummary:
    """Counts derived from the task list right before persistence."""

    total: int = 0
    pending: int = 0
    completed: int = 0
    failed: int = 0


@dataclass(slots=True)
class QueueTask:
    """One queued unit of work."""

    id: int
    action: str
    status: TaskStatus = TaskStatus.PENDING
    params: dict[str, Any] = field(default_factory=dict)
    depends_on: list[int] = field(default_factory=list)
    result: Any = None
    error: str | None = None
    added_at: str | None = None
    executed_at: str | None = None
    _bindings: dict[str, ParamBinding] | None = field(
        default=None,
        repr=False,
        compare=False,
    )

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING

    def bindings(self) -> dict[str, ParamBinding]:
        """Parsed parameter values, computed once per task instance."""

        if self._bindings is None:
            self._bindings = parse_params(self.params)
        return self._bindings

    def referenced_task_ids(self) -> set[int]:
        """Ids of tasks this task reads results from via variable references."""

        referenced: set[int] = set()
        for binding in self.bindings().values():
            referenced.update(reference.task_id for reference in binding.references())
        return referenced


@dataclass(slots=True)
class ExecutionLogEntry:
    """One `execute` run recorded on the queue document."""

    started_at: str
    finished_at: str
    status: QueueStatus
    completed: int
    failed: int
    skipped: int


@dataclass(slots=True)
class QueueDocument:
    """The whole persisted queue."""

    id: str
    created_at: str
    version: int = 1
    status: QueueStatus = QueueStatus.PENDING
    options: QueueOptions = field(default_factory=QueueOptions)
    tasks: list[QueueTask] = field(default_factory=list)
    summary: QueueSummary = field(default_factory=QueueSummary)
    execution_log: list[ExecutionLogEntry] = field(default_factory=list)

    def next_task_id(self) -> int:
        return max((task.id for task in self.tasks), default=0) + 1

    def find_task(self, task_id: int) -> QueueTask | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def pending_tasks(self) -> list[QueueTask]:
        return sorted((task for task in self.tasks if task.is_pending), key=lambda t: t.id)

    def recompute_summary(self) -> QueueSummary:
        """Refresh `summary` from the task list and return it."""

        self.summary = QueueSummary(
            total=len(self.tasks),
            pending=sum(1 for task in self.tasks if task.status == TaskStatus.PENDING),
            completed=sum(1 for task in self.tasks if task.status == TaskStatus.COMPLETED),
            failed=sum(1 for task in self.tasks if task.status == TaskStatus.FAILED),
        )
        return self.summary


@dataclass(slots=True)
class TaskSpec:
    """Input payload for enqueuing one task."""

    action: str
    params: dict[str, Any] = field(default_factory=dict)
    depends_on: list[int] = field(default_factory=list)


@dataclass(slots=True)
class EnqueueResult:
    """Outcome of appending tasks to the queue."""

    queue_id: str
    task_ids: list[int]

    @property
    def count(self) -> int:
        return len(self.task_ids)


@dataclass(slots=True)
class TaskRunResult:
    """Per-task entry reported by verbose executions."""

    id: int
    success: bool
    error: str | None = None


@dataclass(slots=True)
class ExecutionSummary:
    """Structured report returned by every `execute` call."""

    success: bool
    queue_id: str | None
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[TaskRunResult] | None = None
    errors: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "queueId": self.queue_id,
        }
        if self.errors:
            payload["errors"] = list(self.errors)
        if self.results is not None:
            payload["results"] = [
                {"id": item.id, "success": item.success, "error": item.error}
                for item in self.results
            ]
        return payload


@dataclass(slots=True)
class VerificationIssue:
    """A pending task references a resource the backend cannot find."""

    task_id: int
    resource: str
    value: str
    message: str
    type: str = "missing_resource"

    def to_payload(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "type": self.type,
            "resource": self.resource,
            "value": self.value,
            "message": self.message,
        }
