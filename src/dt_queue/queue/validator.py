"""Static queue validation: actions, required params, backward-only references."""

from __future__ import annotations

from dataclasses import dataclass, field

from dt_queue.queue.actions import get_contract
from dt_queue.queue.models import QueueDocument, QueueTask
from dt_queue.queue.variables import parse_reference


class ValidationError(ValueError):
    """Queue or task input rejected before any mutation."""

    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [message])


@dataclass(slots=True)
class ValidationReport:
    """Result of static queue validation."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    task_count: int = 0

    def to_payload(self) -> dict[str, object]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "taskCount": self.task_count,
        }


def validate_queue(queue: QueueDocument) -> ValidationReport:
    """Check every task; issues no external calls and does not mutate the queue."""

    known_ids = {task.id for task in queue.tasks}
    errors: list[str] = []
    warnings: list[str] = []
    for task in queue.tasks:
        task_errors, task_warnings = _validate_task(task, known_ids)
        errors.extend(task_errors)
        warnings.extend(task_warnings)
    return ValidationReport(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        task_count=len(queue.tasks),
    )


def _validate_task(task: QueueTask, known_ids: set[int]) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []

    contract = get_contract(task.action)
    if contract is None:
        return [f"Task {task.id}: Unknown action '{task.action}'"], warnings

    for name in contract.missing_params(task.params):
        errors.append(f"Task {task.id}: Missing required param '{name}' for action '{task.action}'")

    for dep_id in task.depends_on:
        if dep_id not in known_ids:
            errors.append(f"Task {task.id}: Depends on missing task ID {dep_id}")
        elif dep_id >= task.id:
            errors.append(
                f"Task {task.id}: Dependency cycle or forward reference to task {dep_id}",
            )

    for binding in task.bindings().values():
        for reference in binding.references():
            if reference.task_id not in known_ids:
                errors.append(
                    f"Task {task.id}: Variable reference {reference.raw} points to missing task "
                    f"{reference.task_id}",
                )
            elif reference.task_id >= task.id:
                errors.append(
                    f"Task {task.id}: Variable reference {reference.raw} points to "
                    "future/current task",
                )

    for key, value in task.params.items():
        for item in value if isinstance(value, list) else (value,):
            if isinstance(item, str) and item.startswith("$") and parse_reference(item) is None:
                warnings.append(
                    f"Task {task.id}: Param '{key}' value {item!r} looks like a variable "
                    "but is not a valid $<id>[.<path>] reference",
                )

    return errors, warnings
