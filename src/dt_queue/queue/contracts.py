"""On-disk contract for the queue document and task input files."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from dt_queue.queue.models import (
    ExecutionLogEntry,
    QueueDocument,
    QueueOptions,
    QueueStatus,
    QueueSummary,
    QueueTask,
    TaskSpec,
    TaskStatus,
)
from dt_queue.utils import utc_now_iso

QUEUE_DOCUMENT_VERSION = 1


def new_queue_document() -> QueueDocument:
    """Fresh empty queue with default options."""

    return QueueDocument(
        id=f"q_{int(time.time() * 1000)}",
        created_at=utc_now_iso(),
        version=QUEUE_DOCUMENT_VERSION,
    )


def write_json(path: Path, payload: Any) -> None:
    """Persist JSON payload atomically using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
    tmp_path.replace(path)


def dump_queue(queue: QueueDocument) -> dict[str, Any]:
    """Serialize the queue into its persisted (camelCase) shape."""

    return {
        "version": queue.version,
        "id": queue.id,
        "createdAt": queue.created_at,
        "status": queue.status.value,
        "options": {
            "mode": queue.options.mode,
            "stopOnError": queue.options.stop_on_error,
            "rollbackOnError": queue.options.rollback_on_error,
            "validateBeforeExecute": queue.options.validate_before_execute,
            "verbose": queue.options.verbose,
        },
        "tasks": [dump_task(task) for task in queue.tasks],
        "summary": {
            "total": queue.summary.total,
            "pending": queue.summary.pending,
            "completed": queue.summary.completed,
            "failed": queue.summary.failed,
        },
        "executionLog": [
            {
                "startedAt": entry.started_at,
                "finishedAt": entry.finished_at,
                "status": entry.status.value,
                "completed": entry.completed,
                "failed": entry.failed,
                "skipped": entry.skipped,
            }
            for entry in queue.execution_log
        ],
    }


def dump_task(task: QueueTask) -> dict[str, Any]:
    return {
        "id": task.id,
        "action": task.action,
        "status": task.status.value,
        "params": task.params,
        "dependsOn": list(task.depends_on),
        "result": task.result,
        "error": task.error,
        "addedAt": task.added_at,
        "executedAt": task.executed_at,
    }


def parse_queue(raw: Any) -> QueueDocument:
    """Deserialize and validate a persisted queue document."""

    if not isinstance(raw, dict):
        raise TypeError("queue document must be a JSON object")
    queue_id = raw.get("id")
    if not isinstance(queue_id, str) or not queue_id.strip():
        raise ValueError("queue.id must be a non-empty string")
    raw_tasks = raw.get("tasks", [])
    if not isinstance(raw_tasks, list):
        raise TypeError("queue.tasks must be an array")
    raw_log = raw.get("executionLog", [])
    if not isinstance(raw_log, list):
        raise TypeError("queue.executionLog must be an array")

    queue = QueueDocument(
        id=queue_id,
        created_at=str(raw.get("createdAt") or ""),
        version=_as_int(raw.get("version", QUEUE_DOCUMENT_VERSION), "queue.version"),
        status=QueueStatus(raw.get("status", QueueStatus.PENDING.value)),
        options=_parse_options(raw.get("options", {})),
        tasks=[_parse_task(item) for item in raw_tasks],
        execution_log=[_parse_log_entry(item) for item in raw_log],
    )
    summary = raw.get("summary")
    if isinstance(summary, dict):
        queue.summary = QueueSummary(
            total=int(summary.get("total", 0)),
            pending=int(summary.get("pending", 0)),
            completed=int(summary.get("completed", 0)),
            failed=int(summary.get("failed", 0)),
        )
    else:
        queue.recompute_summary()
    return queue


def parse_task_specs(raw: Any) -> list[TaskSpec]:
    """Parse task input: a JSON array, or an object with a `tasks` array."""

    if isinstance(raw, dict) and isinstance(raw.get("tasks"), list):
        raw = raw["tasks"]
    if not isinstance(raw, list):
        raise TypeError('Input must be an array of tasks or object with "tasks" array')

    specs: list[TaskSpec] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise TypeError(f"tasks[{index}] must be an object")
        action = item.get("action")
        if not isinstance(action, str) or not action.strip():
            raise ValueError(f"tasks[{index}].action must be a non-empty string")
        params = item.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise TypeError(f"tasks[{index}].params must be an object")
        specs.append(
            TaskSpec(
                action=action,
                params=params,
                depends_on=_parse_depends_on(item.get("dependsOn"), f"tasks[{index}]"),
            ),
        )
    return specs


def _parse_options(raw: Any) -> QueueOptions:
    if not isinstance(raw, dict):
        raise TypeError("queue.options must be an object")
    defaults = QueueOptions()
    return QueueOptions(
        mode=str(raw.get("mode", defaults.mode)),
        stop_on_error=bool(raw.get("stopOnError", defaults.stop_on_error)),
        rollback_on_error=bool(raw.get("rollbackOnError", defaults.rollback_on_error)),
        validate_before_execute=bool(
            raw.get("validateBeforeExecute", defaults.validate_before_execute),
        ),
        verbose=bool(raw.get("verbose", defaults.verbose)),
    )


def _parse_task(raw: Any) -> QueueTask:
    if not isinstance(raw, dict):
        raise TypeError("queue task must be an object")
    task_id = _as_int(raw.get("id"), "task.id")
    action = raw.get("action")
    if not isinstance(action, str):
        raise TypeError(f"task {task_id}: action must be a string")
    params = raw.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise TypeError(f"task {task_id}: params must be an object")
    error = raw.get("error")
    return QueueTask(
        id=task_id,
        action=action,
        status=TaskStatus(raw.get("status", TaskStatus.PENDING.value)),
        params=params,
        depends_on=_parse_depends_on(raw.get("dependsOn"), f"task {task_id}"),
        result=raw.get("result"),
        error=str(error) if error is not None else None,
        added_at=raw.get("addedAt"),
        executed_at=raw.get("executedAt"),
    )


def _parse_log_entry(raw: Any) -> ExecutionLogEntry:
    if not isinstance(raw, dict):
        raise TypeError("queue.executionLog entry must be an object")
    return ExecutionLogEntry(
        started_at=str(raw.get("startedAt") or ""),
        finished_at=str(raw.get("finishedAt") or ""),
        status=QueueStatus(raw.get("status", QueueStatus.COMPLETED.value)),
        completed=int(raw.get("completed", 0)),
        failed=int(raw.get("failed", 0)),
        skipped=int(raw.get("skipped", 0)),
    )


def _parse_depends_on(raw: Any, owner: str) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise TypeError(f"{owner}: dependsOn must be an array of task ids")
    return [_as_int(item, f"{owner}.dependsOn") for item in raw]


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer")
    return value
