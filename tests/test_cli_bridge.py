from __future__ import annotations

import json
import sys

import allure
import pytest

from dt_queue.queue.bridge import CliBridgeExecutor, ExternalCallError, MoveItem, PathSpec, TagItem
from dt_queue.queue.bridge.cli_bridge import _build_run_args, _item_outcomes, parse_bridge_stdout
from dt_queue.queue.bridge.echo_bridge import main as echo_bridge_main

pytestmark = [
    allure.epic("Automation Bridge"),
    allure.feature("Subprocess Executor"),
]

_ECHO_TEMPLATE = f"{sys.executable} -m dt_queue.queue.bridge.echo_bridge {{script}} {{args}}"


@pytest.fixture()
def bridge(tmp_path) -> CliBridgeExecutor:
    return CliBridgeExecutor(scripts_dir=tmp_path / "jxa", command_template=_ECHO_TEMPLATE)


def test_batched_delete_reports_per_item_outcomes(bridge) -> None:
    outcomes = bridge.delete(["AAAA-1", "MISSING-2", "CCCC-3"])

    assert [(outcome.id, outcome.ok) for outcome in outcomes] == [
        ("AAAA-1", True),
        ("MISSING-2", False),
        ("CCCC-3", True),
    ]
    assert outcomes[1].error == "Record not found"
    assert outcomes[2].result == {"uuid": "CCCC-3", "status": "ok"}


def test_batched_move_and_tag(bridge) -> None:
    moved = bridge.move([MoveItem(id="AAAA-1", destination="/Archive")])
    tagged = bridge.tag([TagItem(id="BBBB-2", tags=["x"], operation="add")])

    assert moved[0].ok is True
    assert tagged[0].ok is True


def test_perform_create_returns_bridge_payload(bridge) -> None:
    result = bridge.perform("create", {"type": "markdown", "name": "Meeting notes"})

    assert result["uuid"] == "ECHO-MEETING-NOTES"


def test_perform_search_passes_query_and_options(bridge) -> None:
    result = bridge.perform("search", {"query": "invoice 2024", "database": "", "limit": 5})

    assert result["arguments"] == ["invoice 2024", {"database": "", "limit": 5}]


def test_perform_rejects_unsupported_action(bridge) -> None:
    with pytest.raises(ExternalCallError, match="not supported"):
        bridge.perform("move", {})


def test_check_existence_maps_records_databases_and_paths(bridge) -> None:
    report = bridge.check_existence(
        ["AAAA-1", "MISSING-2"],
        ["Work"],
        [PathSpec(database="Work", path="/MISSING/x"), PathSpec(database=None, path="/Inbox")],
    )

    assert report.records == {"AAAA-1": True, "MISSING-2": False}
    assert report.databases == {"Work": True}
    assert report.paths == {"Work::/MISSING/x": False, "::/Inbox": True}


def test_check_existence_reads_script_keys_for_paths_without_database(
    bridge,
    monkeypatch,
) -> None:
    response = {
        "success": True,
        "results": {
            "uuids": {},
            "databases": {},
            "paths": {
                "null::/Nope/Missing": {"exists": False},
                "Work::/Projects": {"exists": True},
            },
        },
    }
    monkeypatch.setattr(bridge, "_run_script", lambda *args: response)

    report = bridge.check_existence(
        [],
        [],
        [
            PathSpec(database=None, path="/Nope/Missing"),
            PathSpec(database="Work", path="/Projects"),
            PathSpec(database="Work", path="/Unanswered"),
        ],
    )

    assert report.paths == {
        "::/Nope/Missing": False,
        "Work::/Projects": True,
        "Work::/Unanswered": False,
    }


def test_check_existence_accepts_positional_path_results(bridge, monkeypatch) -> None:
    response = {"success": True, "results": {"paths": [{"exists": True}]}}
    monkeypatch.setattr(bridge, "_run_script", lambda *args: response)

    report = bridge.check_existence(
        [],
        [],
        [PathSpec(database=None, path="/Inbox"), PathSpec(database=None, path="/Later")],
    )

    assert report.paths == {"::/Inbox": True, "::/Later": False}


def test_repeated_id_error_is_taken_once_in_request_order() -> None:
    response = {
        "success": False,
        "deleted": [{"uuid": "A-1", "status": "ok"}, {"uuid": "B-2", "status": "ok"}],
        "errors": [{"uuid": "A-1", "error": "Record not found"}],
    }

    outcomes = _item_outcomes(["A-1", "A-1", "B-2"], response, results_key="deleted")

    assert [(outcome.id, outcome.ok) for outcome in outcomes] == [
        ("A-1", True),
        ("A-1", False),
        ("B-2", True),
    ]
    assert outcomes[0].result == {"uuid": "A-1", "status": "ok"}
    assert outcomes[1].error == "Record not found"
    assert outcomes[2].result == {"uuid": "B-2", "status": "ok"}


def test_ai_complete_returns_response_text(bridge) -> None:
    assert bridge.ai_complete("fix it", engine="claude", format="json") == "echo: fix it"


def test_non_zero_exit_is_external_error(tmp_path) -> None:
    bridge = CliBridgeExecutor(
        scripts_dir=tmp_path,
        command_template=f"{sys.executable} -c 'import sys; sys.exit(3)' {{script}} {{args}}",
    )

    with pytest.raises(ExternalCallError, match="exited with code 3"):
        bridge.delete(["AAAA-1"])


def test_non_json_output_is_external_error(tmp_path) -> None:
    bridge = CliBridgeExecutor(
        scripts_dir=tmp_path,
        command_template=f"{sys.executable} -c 'print(\"hello\")' {{script}} {{args}}",
    )

    with pytest.raises(ExternalCallError, match="non-JSON"):
        bridge.delete(["AAAA-1"])


def test_timeout_is_external_error(tmp_path) -> None:
    bridge = CliBridgeExecutor(
        scripts_dir=tmp_path,
        command_template=f"{sys.executable} -c 'import time; time.sleep(5)' {{script}} {{args}}",
        timeout_seconds=0.2,
    )

    with pytest.raises(ExternalCallError, match="timed out"):
        bridge.delete(["AAAA-1"])


def test_build_run_args_quotes_script_and_arguments(tmp_path) -> None:
    script = tmp_path / "with space" / "batchDelete.js"

    argv = _build_run_args(
        command_template="osascript -l JavaScript {script} {args}",
        script=script,
        args=('["A", "B"]',),
    )

    assert argv == ["osascript", "-l", "JavaScript", str(script), '["A", "B"]']


def test_build_run_args_rejects_unknown_placeholder(tmp_path) -> None:
    with pytest.raises(ExternalCallError, match="placeholder"):
        _build_run_args(command_template="run {payload}", script=tmp_path / "s.js", args=())


def test_parse_bridge_stdout_tolerates_noise() -> None:
    assert parse_bridge_stdout('warning: slow\n{"success": true}\n') == {"success": True}
    assert parse_bridge_stdout("") is None
    assert parse_bridge_stdout("[1, 2]") is None


def test_whole_call_failure_without_item_errors_raises() -> None:
    with pytest.raises(ExternalCallError, match="Database is locked"):
        _item_outcomes(["A"], {"success": False, "error": "Database is locked"}, results_key="x")


def test_echo_bridge_prints_json(capsys) -> None:
    echo_bridge_main(["/jxa/write/batchDelete.js", json.dumps(["AAAA-1", "MISSING-2"])])

    payload = json.loads(capsys.readouterr().out)
    assert payload["success"] is False
    assert payload["deleted"] == [{"uuid": "AAAA-1", "status": "ok"}]
    assert payload["errors"] == [{"uuid": "MISSING-2", "error": "Record not found"}]
