"""Reshape resolved task params into Action Executor calls and map outcomes back."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from dt_queue.queue.bridge.base import (
    ActionExecutor,
    ExternalCallError,
    ItemOutcome,
    ModifyItem,
    MoveItem,
    TagItem,
)
from dt_queue.queue.models import QueueTask

_CHAT_FIELDS = (
    "prompt",
    "promptRecord",
    "records",
    "url",
    "engine",
    "model",
    "temperature",
    "role",
    "mode",
    "usage",
    "format",
)
_RECORD_KEYS = ("uuid", "uuids")


@dataclass(slots=True)
class UnitMember:
    """One task of a dispatch unit with its resolved params."""

    task: QueueTask
    params: dict[str, Any]


@dataclass(slots=True)
class TaskOutcome:
    ok: bool
    result: Any = None
    error: str | None = None


def record_ids(params: dict[str, Any]) -> list[str]:
    """Record ids from `uuids` (list or scalar) or `uuid`."""

    uuids = params.get("uuids")
    if isinstance(uuids, list):
        return [str(item) for item in uuids if item is not None]
    if uuids is not None:
        return [str(uuids)]
    uuid = params.get("uuid")
    if isinstance(uuid, list):
        return [str(item) for item in uuid if item is not None]
    return [str(uuid)] if uuid is not None else []


def tag_names(params: dict[str, Any], *, plural: str = "tags", singular: str = "tag") -> list[str]:
    for key in (plural, singular):
        value = params.get(key)
        if isinstance(value, list):
            return [str(item) for item in value]
        if value is not None:
            return [str(value)]
    return []


def dispatch_batched(
    executor: ActionExecutor,
    action: str,
    members: list[UnitMember],
) -> dict[int, TaskOutcome]:
    """Issue one batched call covering every member; return per-task outcomes.

    A task owning several items (e.g. `uuids` with three ids) fails when any
    of its items failed.
    """

    owners: list[int] = []
    item_ids: list[str] = []
    items: list[Any] = []
    for member in members:
        ids = record_ids(member.params)
        if not ids:
            raise ValueError(f"Task {member.task.id}: Missing uuid(s) for {action}")
        for record_id in ids:
            owners.append(member.task.id)
            item_ids.append(record_id)
            items.append(_batch_item(action, record_id, member.params))

    outcomes = _call_batched(executor, action, items, item_ids)
    if len(outcomes) != len(items):
        raise ExternalCallError(
            f"Bridge returned {len(outcomes)} outcomes for {len(items)} {action} items",
        )

    per_task: dict[int, list[ItemOutcome]] = {member.task.id: [] for member in members}
    for owner, outcome in zip(owners, outcomes, strict=True):
        per_task[owner].append(outcome)
    return {task_id: _task_outcome(task_outcomes) for task_id, task_outcomes in per_task.items()}


def dispatch_single(executor: ActionExecutor, action: str, params: dict[str, Any]) -> Any:
    """Run one non-batchable task and return its result payload."""

    return executor.perform(action, _single_payload(action, params))


def _call_batched(
    executor: ActionExecutor,
    action: str,
    items: list[Any],
    item_ids: list[str],
) -> list[ItemOutcome]:
    if action == "move":
        return executor.move(items)
    if action == "delete":
        return executor.delete(item_ids)
    if action == "modify":
        return executor.modify(items)
    if action.startswith("tag."):
        return executor.tag(items)
    raise ValueError(f"Action '{action}' cannot be batched")


def _batch_item(action: str, record_id: str, params: dict[str, Any]) -> Any:
    if action == "move":
        return MoveItem(id=record_id, destination=str(params.get("destination")))
    if action == "delete":
        return record_id
    if action == "modify":
        properties = {k: v for k, v in params.items() if k not in _RECORD_KEYS}
        nested = properties.pop("properties", None)
        if isinstance(nested, dict):
            properties.update(nested)
        return ModifyItem(id=record_id, properties=properties)
    if action.startswith("tag."):
        return TagItem(
            id=record_id,
            tags=tag_names(params),
            operation=action.split(".", 1)[1],
        )
    raise ValueError(f"Action '{action}' cannot be batched")


def _task_outcome(outcomes: list[ItemOutcome]) -> TaskOutcome:
    failures = [outcome for outcome in outcomes if not outcome.ok]
    if failures:
        return TaskOutcome(
            ok=False,
            error="; ".join(f"{outcome.id}: {outcome.error or 'failed'}" for outcome in failures),
        )
    if len(outcomes) == 1:
        only = outcomes[0]
        return TaskOutcome(ok=True, result={"uuid": only.id, **(only.result or {})})
    return TaskOutcome(
        ok=True,
        result={
            "uuids": [outcome.id for outcome in outcomes],
            "items": [{"uuid": outcome.id, **(outcome.result or {})} for outcome in outcomes],
        },
    )


def _single_payload(action: str, params: dict[str, Any]) -> dict[str, Any]:  # noqa: PLR0911
    if action in {"replicate", "duplicate"}:
        return {
            "records": record_ids(params),
            "to": params.get("destination"),
            "mode": action,
        }
    if action in {"link", "unlink"}:
        return {**params, "operation": action}
    if action == "tag.merge":
        return {
            "database": params.get("database"),
            "target": params.get("target"),
            "sources": params.get("sources"),
            "dryRun": bool(params.get("dryRun", False)),
        }
    if action == "tag.rename":
        return {
            "database": params.get("database"),
            "from": params.get("from"),
            "to": params.get("to"),
            "dryRun": bool(params.get("dryRun", False)),
        }
    if action == "tag.delete":
        tags = tag_names(params)
        if not tags:
            raise ValueError("Missing tag(s) for tag.delete")
        return {
            "database": params.get("database"),
            "tags": tags,
            "dryRun": bool(params.get("dryRun", False)),
        }
    if action == "chat":
        if not params.get("prompt") and not params.get("promptRecord"):
            raise ValueError("Missing prompt or promptRecord for chat")
        payload = {key: params[key] for key in _CHAT_FIELDS if params.get(key) is not None}
        for flag in ("thinking", "toolCalls"):
            if params.get(flag) is False:
                payload[flag] = False
        return payload
    if action == "search":
        return {
            "query": params.get("query"),
            "database": params.get("database") or "",
            "limit": params.get("limit") or 50,
        }
    return dict(params)
