"""Pre-flight existence checks for resources referenced by pending tasks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from dt_queue.queue.bridge.base import ActionExecutor, PathSpec
from dt_queue.queue.models import QueueDocument, QueueTask, VerificationIssue

logger = logging.getLogger(__name__)

_UUID_SHAPE = re.compile(r"^[A-F0-9-]{8,}$", re.IGNORECASE)
_ITEM_LINK_PREFIX = "x-devonthink-item://"
_RECORD_SCALAR_KEYS = ("uuid", "promptRecord")
_RECORD_LIST_KEYS = ("uuids", "records")
_PATH_KEYS = ("destination", "groupPath", "group")


@dataclass(slots=True)
class VerificationReport:
    valid: bool
    issues: list[VerificationIssue] = field(default_factory=list)
    checked_records: int = 0
    checked_databases: int = 0
    checked_paths: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "issues": [issue.to_payload() for issue in self.issues],
            "checked": {
                "uuids": self.checked_records,
                "databases": self.checked_databases,
                "paths": self.checked_paths,
            },
        }


def looks_like_record_id(value: Any) -> bool:
    """Item links, or dash-containing hex ids without path separators."""

    if not isinstance(value, str) or not value:
        return False
    if value.startswith(_ITEM_LINK_PREFIX):
        return True
    if "/" in value:
        return False
    return bool(_UUID_SHAPE.match(value)) and "-" in value


def verify_queue(queue: QueueDocument, executor: ActionExecutor) -> VerificationReport:
    """Collect referenced resources, check them in one call, map misses to tasks."""

    pending = queue.pending_tasks()
    records: dict[str, None] = {}
    databases: dict[str, None] = {}
    paths: list[tuple[int, PathSpec]] = []
    for task in pending:
        for record_id in _task_record_ids(task):
            records.setdefault(record_id)
        database = _task_database(task)
        if database is not None:
            databases.setdefault(database)
        path = _task_path(task)
        if path is not None:
            paths.append((task.id, PathSpec(database=database, path=path)))

    if not records and not databases and not paths:
        return VerificationReport(valid=True)

    existence = executor.check_existence(
        list(records),
        list(databases),
        [spec for _, spec in paths],
    )

    issues: list[VerificationIssue] = []
    for record_id in records:
        if existence.records.get(record_id, False):
            continue
        for task in pending:
            if record_id in _task_record_ids(task):
                issues.append(
                    VerificationIssue(
                        task_id=task.id,
                        resource="record",
                        value=record_id,
                        message=f"Record not found: {record_id}",
                    ),
                )
    for database in databases:
        if existence.databases.get(database, False):
            continue
        for task in pending:
            if _task_database(task) == database:
                issues.append(
                    VerificationIssue(
                        task_id=task.id,
                        resource="database",
                        value=database,
                        message=f"Database not found: {database}",
                    ),
                )
    for task_id, spec in paths:
        if existence.paths.get(spec.key, False):
            continue
        issues.append(
            VerificationIssue(
                task_id=task_id,
                resource="group",
                value=spec.path,
                message=f"Group path not found: {spec.path} (in {spec.database or 'current db'})",
            ),
        )

    issues.sort(key=lambda issue: issue.task_id)
    if issues:
        logger.info("Verification found %d issue(s)", len(issues))
    return VerificationReport(
        valid=not issues,
        issues=issues,
        checked_records=len(records),
        checked_databases=len(databases),
        checked_paths=len(paths),
    )


def database_param(task: QueueTask) -> str | None:
    value = task.params.get("database")
    return value if isinstance(value, str) and value else None


def _task_record_ids(task: QueueTask) -> list[str]:
    found: list[str] = []
    for key in _RECORD_SCALAR_KEYS:
        value = task.params.get(key)
        if _is_literal(value) and looks_like_record_id(value):
            found.append(value)
    for key in _RECORD_LIST_KEYS:
        values = task.params.get(key)
        if isinstance(values, list):
            found.extend(v for v in values if _is_literal(v) and looks_like_record_id(v))
    return found


def _task_database(task: QueueTask) -> str | None:
    database = database_param(task)
    if database is None or not _is_literal(database):
        return None
    return database


def _task_path(task: QueueTask) -> str | None:
    for key in _PATH_KEYS:
        value = task.params.get(key)
        if isinstance(value, str) and value:
            if _is_literal(value) and "/" in value:
                return value
            return None
    return None


def _is_literal(value: Any) -> bool:
    return isinstance(value, str) and not value.startswith("$")
