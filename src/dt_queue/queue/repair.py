"""AI-assisted queue repair: propose a replacement task list for a broken queue."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from dt_queue.queue.actions import is_known_action
from dt_queue.queue.bridge.base import ActionExecutor
from dt_queue.queue.contracts import dump_task, parse_task_specs
from dt_queue.queue.models import QueueStatus, TaskSpec, VerificationIssue
from dt_queue.queue.verifier import verify_queue

if TYPE_CHECKING:
    from dt_queue.queue.engine import QueueEngine

logger = logging.getLogger(__name__)

DEFAULT_REPAIR_ENGINE = "claude"
_CONTEXT_LIMIT = 10


class RepairError(RuntimeError):
    """AI completion failed or returned no usable task list."""


@dataclass(slots=True)
class SessionContext:
    """Recently used resources, offered to the AI as repair hints."""

    databases: list[str] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)
    records: list[dict[str, Any]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.databases or self.groups or self.records)


class SessionContextProvider(Protocol):
    def recent(self) -> SessionContext:
        """Return recent databases, groups and records."""


class FileSessionContext:
    """Reads recent-session context from a JSON state file.

    Expected shape: ``{"recentDatabases": [...], "recentGroups": [...],
    "recentRecords": [{"uuid": ..., "name": ...}, ...]}``. Entries may be
    plain strings or objects carrying ``name`` / ``path``.
    """

    def __init__(self, state_path: Path) -> None:
        self.state_path = state_path

    def recent(self) -> SessionContext:
        try:
            raw = json.loads(self.state_path.read_text("utf-8"))
        except FileNotFoundError:
            return SessionContext()
        except json.JSONDecodeError as error:
            logger.warning("Ignoring unreadable session state %s: %s", self.state_path, error)
            return SessionContext()
        if not isinstance(raw, dict):
            return SessionContext()
        return SessionContext(
            databases=_names(raw.get("recentDatabases"), "name"),
            groups=_names(raw.get("recentGroups"), "path"),
            records=[
                item for item in _as_list(raw.get("recentRecords")) if isinstance(item, dict)
            ][:_CONTEXT_LIMIT],
        )


@dataclass(slots=True)
class RepairProposal:
    needed: bool
    message: str
    proposed_tasks: list[TaskSpec] = field(default_factory=list)
    issues: list[VerificationIssue] = field(default_factory=list)
    applied: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "needed": self.needed,
            "message": self.message,
            "issuesResolved": len(self.issues),
            "applied": self.applied,
            "proposedTasks": [
                {"action": spec.action, "params": spec.params, "dependsOn": spec.depends_on}
                for spec in self.proposed_tasks
            ],
        }


class RepairAdvisor:
    """Verify the queue, ask the AI for a corrected task list, optionally apply it."""

    def __init__(
        self,
        *,
        engine: QueueEngine,
        executor: ActionExecutor,
        session_context: SessionContextProvider | None = None,
    ) -> None:
        self.engine = engine
        self.executor = executor
        self.session_context = session_context

    def propose(
        self,
        *,
        ai_engine: str = DEFAULT_REPAIR_ENGINE,
        apply: bool = False,
    ) -> RepairProposal:
        queue = self.engine.load()
        report = verify_queue(queue, self.executor)
        if report.valid and queue.status != QueueStatus.FAILED:
            return RepairProposal(needed=False, message="No repair needed")

        context = self.session_context.recent() if self.session_context else SessionContext()
        prompt = build_repair_prompt(
            tasks=[dump_task(task) for task in queue.tasks],
            issues=report.issues,
            context=context,
        )
        logger.info("Requesting queue repair from %s (%d issue(s))", ai_engine, len(report.issues))
        try:
            response = self.executor.ai_complete(prompt, engine=ai_engine, format="json")
        except Exception as error:  # noqa: BLE001
            raise RepairError(f"AI repair request failed: {error}") from error

        specs = parse_repair_response(response)
        proposal = RepairProposal(
            needed=True,
            message=f"Proposed {len(specs)} task(s)",
            proposed_tasks=specs,
            issues=list(report.issues),
        )
        if apply:
            self.engine.replace_tasks(specs)
            proposal.applied = True
            proposal.message = f"Applied {len(specs)} repaired task(s)"
        return proposal


def build_repair_prompt(
    *,
    tasks: list[dict[str, Any]],
    issues: list[VerificationIssue],
    context: SessionContext,
) -> str:
    lines = [
        "You are repairing a queue of document-management tasks that cannot run as written.",
        "",
        "Current tasks:",
        json.dumps(tasks, indent=2, ensure_ascii=False),
        "",
    ]
    if issues:
        lines.append("Problems found:")
        lines.extend(f"- Task {issue.task_id}: {issue.message}" for issue in issues)
        lines.append("")
    else:
        lines.extend(["The last execution of this queue failed.", ""])
    if not context.is_empty():
        lines.append("Recently used resources:")
        if context.databases:
            lines.append(f"- Databases: {', '.join(context.databases)}")
        if context.groups:
            lines.append(f"- Groups: {', '.join(context.groups)}")
        for record in context.records:
            lines.append(f"- Record {record.get('name', '?')} ({record.get('uuid', '?')})")
        lines.append("")
    lines.extend(
        [
            "Return ONLY a JSON array of corrected tasks. Each task is an object with",
            '"action", "params" and optional "dependsOn". Task ids are 1-based in array order;',
            'reference earlier results as "$<id>.<field>". Keep valid tasks unchanged.',
        ],
    )
    return "\n".join(lines)


def parse_repair_response(response: Any) -> list[TaskSpec]:
    """Turn an AI response into validated task specs or raise `RepairError`."""

    raw = extract_task_array(response)
    try:
        specs = parse_task_specs(raw)
    except (TypeError, ValueError) as error:
        raise RepairError(f"AI returned invalid tasks: {error}") from error
    unknown = sorted({spec.action for spec in specs if not is_known_action(spec.action)})
    if unknown:
        raise RepairError(f"AI returned unknown action(s): {', '.join(unknown)}")
    return specs


def extract_task_array(response: Any) -> list[Any]:
    if isinstance(response, list):
        return response
    if isinstance(response, dict):
        for key in ("tasks", "response"):
            if key in response:
                return extract_task_array(response[key])
        raise RepairError("AI response object carries no task list")
    if not isinstance(response, str):
        raise RepairError(f"Unsupported AI response type: {type(response).__name__}")

    text = response.strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict) and isinstance(parsed.get("tasks"), list):
        return parsed["tasks"]

    for fragment in _balanced_arrays(text):
        try:
            candidate = json.loads(fragment)
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, list):
            return candidate
    raise RepairError("No JSON task array found in AI response")


def _balanced_arrays(text: str) -> Iterator[str]:
    """Yield balanced `[...]` spans in order, ignoring brackets inside JSON strings."""

    start = text.find("[")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "[":
                depth += 1
            elif char == "]":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break
        start = text.find("[", start + 1)


def _names(raw: Any, key: str) -> list[str]:
    names: list[str] = []
    for item in _as_list(raw):
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, dict) and isinstance(item.get(key), str):
            names.append(item[key])
    return names[:_CONTEXT_LIMIT]


def _as_list(raw: Any) -> list[Any]:
    return raw if isinstance(raw, list) else []
