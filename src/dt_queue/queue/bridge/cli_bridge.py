"""Subprocess-based Action Executor running automation-bridge scripts."""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
from collections import Counter
from pathlib import Path
from typing import Any

from dt_queue.queue.bridge.base import (
    ExistenceReport,
    ExternalCallError,
    ItemOutcome,
    ModifyItem,
    MoveItem,
    PathSpec,
    TagItem,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TEMPLATE = "osascript -l JavaScript {script} {args}"

# (script folder, script name) per single-call action.
_SINGLE_ACTION_SCRIPTS: dict[str, tuple[str, str]] = {
    "create": ("write", "createRecord"),
    "replicate": ("write", "copyRecord"),
    "duplicate": ("write", "copyRecord"),
    "link": ("write", "linkRecords"),
    "unlink": ("write", "linkRecords"),
    "chat": ("read", "chat"),
    "tag.merge": ("write", "mergeTags"),
    "tag.rename": ("write", "renameTags"),
    "tag.delete": ("write", "deleteTags"),
    "search": ("read", "search"),
}


class CliBridgeExecutor:
    """Render a command template per bridge script and parse its JSON stdout.

    Each script prints one JSON object: ``{"success": bool, "error": str?, ...}``.
    Batched scripts additionally report per-item failures as
    ``"errors": [{"uuid": ..., "error": ...}]`` and successes under a
    script-specific list key (``moved``, ``deleted``, ``updated``, ``tagged``).
    """

    def __init__(
        self,
        *,
        scripts_dir: Path,
        command_template: str = DEFAULT_COMMAND_TEMPLATE,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.scripts_dir = scripts_dir
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds

    def move(self, items: list[MoveItem]) -> list[ItemOutcome]:
        payload = [{"uuid": item.id, "destination": item.destination} for item in items]
        response = self._run_script("write", "batchMove", json.dumps(payload))
        return _item_outcomes([item.id for item in items], response, results_key="moved")

    def delete(self, ids: list[str]) -> list[ItemOutcome]:
        response = self._run_script("write", "batchDelete", json.dumps(ids))
        return _item_outcomes(ids, response, results_key="deleted")

    def modify(self, items: list[ModifyItem]) -> list[ItemOutcome]:
        payload = [{"uuid": item.id, "properties": item.properties} for item in items]
        response = self._run_script("write", "batchUpdate", json.dumps(payload))
        return _item_outcomes([item.id for item in items], response, results_key="updated")

    def tag(self, items: list[TagItem]) -> list[ItemOutcome]:
        payload = [
            {"uuid": item.id, "tags": item.tags, "operation": item.operation} for item in items
        ]
        response = self._run_script("write", "batchTag", json.dumps(payload))
        return _item_outcomes([item.id for item in items], response, results_key="tagged")

    def perform(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        script = _SINGLE_ACTION_SCRIPTS.get(action)
        if script is None:
            raise ExternalCallError(f"Action '{action}' is not supported by the bridge")
        if action == "search":
            options = {k: v for k, v in params.items() if k != "query"}
            response = self._run_script(*script, str(params.get("query", "")), json.dumps(options))
        else:
            response = self._run_script(*script, json.dumps(params))
        if not response.get("success"):
            raise ExternalCallError(str(response.get("error") or "Unknown bridge error"))
        return response

    def check_existence(
        self,
        records: list[str],
        databases: list[str],
        paths: list[PathSpec],
    ) -> ExistenceReport:
        payload = {
            "uuids": records,
            "databases": databases,
            "paths": [{"database": spec.database, "path": spec.path} for spec in paths],
        }
        response = self._run_script("read", "verifyResources", json.dumps(payload))
        if not response.get("success"):
            raise ExternalCallError(
                f"Verification script failed: {response.get('error') or 'unknown error'}",
            )
        results = response.get("results") or {}
        raw_paths = results.get("paths") or {}
        return ExistenceReport(
            records={str(k): bool(v) for k, v in (results.get("uuids") or {}).items()},
            databases={str(k): bool(v) for k, v in (results.get("databases") or {}).items()},
            paths={
                spec.key: _path_exists(raw_paths, index, spec)
                for index, spec in enumerate(paths)
            },
        )

    def ai_complete(self, prompt: str, *, engine: str, format: str) -> Any:
        payload = {"prompt": prompt, "engine": engine, "format": format, "thinking": True}
        response = self._run_script("read", "chat", json.dumps(payload))
        if not response.get("success"):
            raise ExternalCallError(f"AI completion failed: {response.get('error')}")
        return response.get("response")

    def _run_script(self, folder: str, name: str, *args: str) -> dict[str, Any]:
        script_path = self.scripts_dir / folder / f"{name}.js"
        argv = _build_run_args(
            command_template=self.command_template,
            script=script_path,
            args=args,
        )
        logger.debug("Running bridge script %s/%s", folder, name)
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                env=os.environ.copy(),
                check=False,
            )
        except FileNotFoundError as error:
            raise ExternalCallError(f"Bridge command not found: {argv[0]}") from error
        except subprocess.TimeoutExpired as error:
            raise ExternalCallError(
                f"Bridge script {name} timed out after {self.timeout_seconds}s",
            ) from error
        except OSError as error:
            raise ExternalCallError(f"Bridge command failed to start: {error}") from error

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout).strip()
            raise ExternalCallError(
                f"Bridge script {name} exited with code {completed.returncode}: {detail}",
            )
        response = parse_bridge_stdout(completed.stdout)
        if response is None:
            raise ExternalCallError(f"Bridge script {name} returned non-JSON output")
        return response


def parse_bridge_stdout(stdout_text: str) -> dict[str, Any] | None:
    """Parse the JSON object a bridge script printed, tolerating surrounding noise."""

    text = stdout_text.strip()
    if not text:
        return None
    direct = _try_load_dict(text)
    if direct is not None:
        return direct
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return _try_load_dict(text[start : end + 1])


def _try_load_dict(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _build_run_args(
    *,
    command_template: str,
    script: Path,
    args: tuple[str, ...],
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise ExternalCallError("Bridge command template is empty.")
    try:
        rendered = stripped.format(
            script=shlex.quote(str(script)),
            args=" ".join(shlex.quote(arg) for arg in args),
        )
    except (KeyError, IndexError) as error:
        raise ExternalCallError(f"Unsupported command template placeholder: {error}") from error
    argv = shlex.split(rendered)
    if not argv:
        raise ExternalCallError("Bridge command template rendered empty command.")
    return argv


def _item_outcomes(
    ids: list[str],
    response: dict[str, Any],
    *,
    results_key: str,
) -> list[ItemOutcome]:
    errors: dict[str, list[str]] = {}
    for entry in response.get("errors") or []:
        if isinstance(entry, dict) and entry.get("uuid") is not None:
            errors.setdefault(str(entry["uuid"]), []).append(
                str(entry.get("error") or "Unknown error"),
            )
    if not response.get("success") and not errors:
        raise ExternalCallError(str(response.get("error") or "Unknown bridge error"))

    successes = [
        item for item in (response.get(results_key) or response.get("results") or [])
        if isinstance(item, dict)
    ]
    # Scripts process items in order, so for a repeated id the earlier items
    # succeed and the trailing ones carry its errors.
    remaining = Counter(ids)
    outcomes: list[ItemOutcome] = []
    cursor = 0
    for item_id in ids:
        remaining[item_id] -= 1
        pending_errors = errors.get(item_id)
        if pending_errors and len(pending_errors) > remaining[item_id]:
            outcomes.append(ItemOutcome(id=item_id, ok=False, error=pending_errors.pop(0)))
            continue
        result = successes[cursor] if cursor < len(successes) else None
        cursor += 1
        outcomes.append(ItemOutcome(id=item_id, ok=True, result=result))
    return outcomes


def script_path_key(database: str | None, path: str) -> str:
    """Key the verification script uses for a path result (JS template of ``database``)."""
    return f"{'null' if database is None else database}::{path}"


def _path_exists(raw_paths: dict[str, Any] | list[Any], index: int, spec: PathSpec) -> bool:
    """Look up one requested path; a result that never came back counts as missing."""
    if isinstance(raw_paths, list):
        entry = raw_paths[index] if index < len(raw_paths) else None
    else:
        entry = raw_paths.get(script_path_key(spec.database, spec.path))
    if isinstance(entry, dict):
        return bool(entry.get("exists"))
    return bool(entry)
