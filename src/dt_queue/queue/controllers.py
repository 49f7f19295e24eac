"""Controllers for queue CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dt_queue.config import Settings
from dt_queue.queue.bridge.cli_bridge import CliBridgeExecutor
from dt_queue.queue.contracts import dump_task, parse_task_specs
from dt_queue.queue.engine import QueueEngine
from dt_queue.queue.models import ClearScope, QueueDocument, QueueTask, TaskSpec, TaskStatus
from dt_queue.queue.repair import FileSessionContext, RepairAdvisor
from dt_queue.queue.store import FileQueueStore
from dt_queue.queue.verifier import verify_queue


@dataclass(slots=True)
class QueueStatusCommand:
    """CLI inputs for status command."""

    config_dir: Path | None
    show_all: bool = False
    as_json: bool = False


@dataclass(slots=True)
class QueueListCommand:
    config_dir: Path | None
    as_json: bool = False


@dataclass(slots=True)
class QueueAddCommand:
    """CLI inputs for adding one task."""

    config_dir: Path | None
    action: str
    params: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[int, ...] = ()


@dataclass(slots=True)
class QueueLoadCommand:
    """CLI inputs for loading tasks from a JSON document."""

    config_dir: Path | None
    source_text: str
    source_name: str = "-"


@dataclass(slots=True)
class QueueReportCommand:
    """CLI inputs for validate and verify commands."""

    config_dir: Path | None
    as_json: bool = False


@dataclass(slots=True)
class QueueExecuteCommand:
    config_dir: Path | None
    dry_run: bool = False
    verbose: bool = False
    as_json: bool = False


@dataclass(slots=True)
class QueueRepairCommand:
    config_dir: Path | None
    apply: bool = False
    engine: str | None = None
    as_json: bool = False


@dataclass(slots=True)
class QueueClearCommand:
    config_dir: Path | None
    scope: ClearScope = ClearScope.COMPLETED


@dataclass(slots=True)
class QueueCommandResult:
    """Printable output plus the exit status the CLI should report."""

    lines: list[str]
    success: bool = True


class QueueCliController:
    """Coordinates queue command execution."""

    def status(self, command: QueueStatusCommand) -> list[str]:
        queue = _engine(_settings(command.config_dir)).load()
        tasks = (
            queue.tasks
            if command.show_all
            else [task for task in queue.tasks if task.status != TaskStatus.COMPLETED]
        )
        queue.recompute_summary()
        if command.as_json:
            return [
                _dump_json(
                    {
                        "id": queue.id,
                        "status": queue.status.value,
                        "summary": _summary_payload(queue),
                        "tasks": [dump_task(task) for task in tasks],
                    },
                ),
            ]

        summary = queue.summary
        lines = [
            f"Queue: {queue.id} status={queue.status.value}",
            f"Tasks: total={summary.total} pending={summary.pending} "
            f"completed={summary.completed} failed={summary.failed}",
            f"Options: mode={queue.options.mode} stop_on_error={queue.options.stop_on_error} "
            f"rollback_on_error={queue.options.rollback_on_error} "
            f"validate_before_execute={queue.options.validate_before_execute}",
        ]
        if queue.execution_log:
            last = queue.execution_log[-1]
            lines.append(
                f"Last run: {last.status.value} finished_at={last.finished_at} "
                f"completed={last.completed} failed={last.failed} skipped={last.skipped}",
            )
        lines.extend(_task_line(task) for task in tasks)
        return lines

    def list_tasks(self, command: QueueListCommand) -> list[str]:
        queue = _engine(_settings(command.config_dir)).load()
        if command.as_json:
            return [_dump_json([dump_task(task) for task in queue.tasks])]
        if not queue.tasks:
            return ["Queue is empty."]
        return [_task_line(task) for task in queue.tasks]

    def add(self, command: QueueAddCommand) -> list[str]:
        engine = _engine(_settings(command.config_dir))
        result = engine.enqueue(
            [
                TaskSpec(
                    action=command.action,
                    params=dict(command.params),
                    depends_on=list(command.depends_on),
                ),
            ],
        )
        return [
            f"Task added: id={result.task_ids[0]} action={command.action} queue={result.queue_id}",
        ]

    def load(self, command: QueueLoadCommand) -> list[str]:
        try:
            raw = json.loads(command.source_text)
        except json.JSONDecodeError as error:
            raise ValueError(f"Invalid JSON in {command.source_name}: {error}") from error
        specs = parse_task_specs(raw)
        if not specs:
            return [f"No tasks found in {command.source_name}."]
        result = _engine(_settings(command.config_dir)).enqueue(specs)
        ids = ", ".join(str(task_id) for task_id in result.task_ids)
        return [f"Loaded {result.count} task(s) into {result.queue_id}: {ids}"]

    def validate(self, command: QueueReportCommand) -> QueueCommandResult:
        report = _engine(_settings(command.config_dir)).validate()
        if command.as_json:
            return QueueCommandResult([_dump_json(report.to_payload())], success=report.valid)
        lines = [
            f"Validation: {'passed' if report.valid else 'failed'} tasks={report.task_count}",
        ]
        lines.extend(f"error: {error}" for error in report.errors)
        lines.extend(f"warning: {warning}" for warning in report.warnings)
        return QueueCommandResult(lines, success=report.valid)

    def verify(self, command: QueueReportCommand) -> QueueCommandResult:
        settings = _settings(command.config_dir)
        engine = _engine(settings)
        report = verify_queue(engine.load(), engine.executor)
        if command.as_json:
            return QueueCommandResult([_dump_json(report.to_payload())], success=report.valid)
        lines = [
            f"Verification: {'passed' if report.valid else 'failed'} "
            f"records={report.checked_records} databases={report.checked_databases} "
            f"paths={report.checked_paths}",
        ]
        lines.extend(f"task {issue.task_id}: {issue.message}" for issue in report.issues)
        return QueueCommandResult(lines, success=report.valid)

    def execute(self, command: QueueExecuteCommand) -> QueueCommandResult:
        engine = _engine(_settings(command.config_dir))
        summary = engine.execute(dry_run=command.dry_run, verbose=command.verbose or None)
        if command.as_json:
            return QueueCommandResult([_dump_json(summary.to_payload())], success=summary.success)

        label = "Dry run" if command.dry_run else "Execution"
        lines = [
            f"{label} {'succeeded' if summary.success else 'failed'}: "
            f"queue={summary.queue_id} completed={summary.completed} "
            f"failed={summary.failed} skipped={summary.skipped}",
        ]
        lines.extend(f"error: {error}" for error in summary.errors)
        for item in summary.results or []:
            state = "ok" if item.success else f"failed: {item.error}"
            lines.append(f"task {item.id}: {state}")
        return QueueCommandResult(lines, success=summary.success)

    def repair(self, command: QueueRepairCommand) -> QueueCommandResult:
        settings = _settings(command.config_dir)
        engine = _engine(settings)
        advisor = RepairAdvisor(
            engine=engine,
            executor=engine.executor,
            session_context=(
                FileSessionContext(settings.repair.state_file)
                if settings.repair.state_file is not None
                else None
            ),
        )
        proposal = advisor.propose(
            ai_engine=command.engine or settings.repair.engine,
            apply=command.apply,
        )
        if command.as_json:
            return QueueCommandResult([_dump_json(proposal.to_payload())])

        lines = [proposal.message]
        lines.extend(f"issue: task {issue.task_id}: {issue.message}" for issue in proposal.issues)
        for index, spec in enumerate(proposal.proposed_tasks, start=1):
            lines.append(f"{index}. {spec.action} {json.dumps(spec.params, ensure_ascii=False)}")
        if proposal.needed and not proposal.applied:
            lines.append("Run again with --apply to replace the queue with these tasks.")
        return QueueCommandResult(lines)

    def clear(self, command: QueueClearCommand) -> list[str]:
        removed = _engine(_settings(command.config_dir)).clear(command.scope)
        if command.scope == ClearScope.ALL:
            return [f"Queue deleted ({removed} task(s))."]
        return [f"Cleared {removed} {command.scope.value} task(s)."]


def parse_param_assignments(assignments: tuple[str, ...]) -> dict[str, Any]:
    """Parse ``key=value`` pairs; values are JSON when they parse, else plain strings."""

    params: dict[str, Any] = {}
    for assignment in assignments:
        key, separator, value = assignment.partition("=")
        if not separator or not key.strip():
            raise ValueError(f"Invalid --param {assignment!r}; expected key=value")
        try:
            params[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            params[key.strip()] = value
    return params


def _settings(config_dir: Path | None) -> Settings:
    settings = Settings.from_env(config_dir=config_dir)
    settings.validate()
    return settings


def _engine(settings: Settings) -> QueueEngine:
    return QueueEngine(
        store=FileQueueStore(settings.queue.queue_path),
        executor=CliBridgeExecutor(
            scripts_dir=settings.bridge.scripts_dir,
            command_template=settings.bridge.command_template,
            timeout_seconds=settings.bridge.timeout_seconds,
        ),
        lock_retries=settings.queue.lock_retries,
        lock_retry_delay_seconds=settings.queue.lock_retry_delay_seconds,
    )


def _task_line(task: QueueTask) -> str:
    line = f"[{task.id}] {task.status.value:<9} {task.action}"
    if task.depends_on:
        line += f" depends_on={','.join(str(dep) for dep in task.depends_on)}"
    if task.params:
        line += f" {json.dumps(task.params, ensure_ascii=False)}"
    if task.error and task.status in {TaskStatus.FAILED, TaskStatus.SKIPPED}:
        line += f" error={task.error}"
    return line


def _summary_payload(queue: QueueDocument) -> dict[str, int]:
    summary = queue.summary
    return {
        "total": summary.total,
        "pending": summary.pending,
        "completed": summary.completed,
        "failed": summary.failed,
    }


def _dump_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)
