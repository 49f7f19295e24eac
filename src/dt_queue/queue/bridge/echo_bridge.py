"""Local deterministic bridge for CLI integration tests.

Mimics the JSON responses of the real automation scripts. Any record id,
database or group path containing ``MISSING`` is reported as not found.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from dt_queue.queue.bridge.cli_bridge import script_path_key

_BATCH_RESULT_KEYS = {
    "batchMove": "moved",
    "batchDelete": "deleted",
    "batchUpdate": "updated",
    "batchTag": "tagged",
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("script")
    parser.add_argument("args", nargs="*")
    args = parser.parse_args(argv)

    script = Path(args.script).stem
    payloads = [_maybe_json(arg) for arg in args.args]
    print(json.dumps(_respond(script, payloads)))
    return 0


def _respond(script: str, payloads: list[Any]) -> dict[str, Any]:
    if script in _BATCH_RESULT_KEYS:
        return _batch_response(script, payloads[0] if payloads else [])
    if script == "verifyResources":
        return _verify_response(payloads[0] if payloads else {})
    if script == "chat":
        request = payloads[0] if payloads else {}
        prompt = request.get("prompt") if isinstance(request, dict) else None
        return {"success": True, "response": f"echo: {prompt or ''}"}
    if script == "createRecord":
        request = payloads[0] if payloads else {}
        name = request.get("name", "record") if isinstance(request, dict) else "record"
        return {"success": True, "uuid": f"ECHO-{_slug(str(name))}", "name": name}
    return {"success": True, "script": script, "arguments": payloads}


def _batch_response(script: str, items: list[Any]) -> dict[str, Any]:
    results: list[dict[str, Any]] = []
    errors: list[dict[str, str]] = []
    for item in items:
        uuid = item if isinstance(item, str) else str(item.get("uuid", ""))
        if "MISSING" in uuid:
            errors.append({"uuid": uuid, "error": "Record not found"})
        else:
            results.append({"uuid": uuid, "status": "ok"})
    response: dict[str, Any] = {
        "success": not errors,
        _BATCH_RESULT_KEYS[script]: results,
        "count": len(results),
    }
    if errors:
        response["errors"] = errors
    return response


def _verify_response(request: dict[str, Any]) -> dict[str, Any]:
    paths: dict[str, dict[str, bool]] = {}
    for item in request.get("paths", []):
        key = script_path_key(item.get("database"), str(item.get("path")))
        paths[key] = {"exists": "MISSING" not in str(item.get("path"))}
    return {
        "success": True,
        "results": {
            "uuids": {uuid: "MISSING" not in uuid for uuid in request.get("uuids", [])},
            "databases": {db: "MISSING" not in db for db in request.get("databases", [])},
            "paths": paths,
        },
    }


def _maybe_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _slug(value: str) -> str:
    return "".join(ch if ch.isalnum() else "-" for ch in value).upper()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
