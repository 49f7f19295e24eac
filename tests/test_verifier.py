from __future__ import annotations

import allure
import pytest

from dt_queue.queue.bridge.base import ExistenceReport, PathSpec
from dt_queue.queue.contracts import new_queue_document
from dt_queue.queue.models import QueueTask, TaskStatus
from dt_queue.queue.verifier import looks_like_record_id, verify_queue

pytestmark = [
    allure.epic("Queue Engine"),
    allure.feature("Resource Verification"),
]

RECORD_A = "8F2A1C3E-0000-4000-8000-00000000000A"
RECORD_B = "8F2A1C3E-0000-4000-8000-00000000000B"


def _queue(*tasks: QueueTask):
    queue = new_queue_document()
    queue.tasks = list(tasks)
    return queue


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (RECORD_A, True),
        ("x-devonthink-item://8F2A1C3E", True),
        ("ABCDEF12", False),
        ("/Inbox/ABCDEF-12", False),
        ("Inbox", False),
        (42, False),
    ],
)
def test_looks_like_record_id(value, expected) -> None:
    assert looks_like_record_id(value) is expected


def test_nothing_to_check_skips_external_call(fake_executor) -> None:
    queue = _queue(QueueTask(id=1, action="chat", params={"prompt": "hello"}))

    report = verify_queue(queue, fake_executor)

    assert report.valid is True
    assert fake_executor.calls == []


def test_collects_pending_resources_only(fake_executor) -> None:
    queue = _queue(
        QueueTask(
            id=1,
            action="move",
            params={
                "uuids": [RECORD_A, "$3.uuid"],
                "destination": "/Projects/2024",
                "database": "Work",
            },
        ),
        QueueTask(id=2, action="delete", params={"uuid": RECORD_B}, status=TaskStatus.COMPLETED),
        QueueTask(id=3, action="chat", params={"promptRecord": RECORD_B, "database": "$1.db"}),
        QueueTask(id=4, action="move", params={"uuid": RECORD_A, "destination": "GROUP-UUID"}),
    )

    report = verify_queue(queue, fake_executor)

    assert fake_executor.calls == [
        (
            "check_existence",
            (
                [RECORD_A, RECORD_B],
                ["Work"],
                [PathSpec(database="Work", path="/Projects/2024")],
            ),
        ),
    ]
    assert report.valid is True
    assert report.to_payload()["checked"] == {"uuids": 2, "databases": 1, "paths": 1}


def test_missing_resources_map_back_to_every_referencing_task(fake_executor) -> None:
    fake_executor.missing = {RECORD_A, "Archive", "/Gone"}
    queue = _queue(
        QueueTask(id=1, action="delete", params={"uuid": RECORD_A}),
        QueueTask(id=2, action="tag.add", params={"uuids": [RECORD_A], "tags": ["x"]}),
        QueueTask(id=3, action="search", params={"query": "q", "database": "Archive"}),
        QueueTask(id=4, action="move", params={"uuid": RECORD_B, "destination": "/Gone"}),
    )

    report = verify_queue(queue, fake_executor)

    assert report.valid is False
    assert [(issue.task_id, issue.resource) for issue in report.issues] == [
        (1, "record"),
        (2, "record"),
        (3, "database"),
        (4, "group"),
    ]
    assert report.issues[0].message == f"Record not found: {RECORD_A}"
    assert report.issues[2].message == "Database not found: Archive"
    assert report.issues[3].message == "Group path not found: /Gone (in current db)"
    assert report.issues[3].to_payload()["type"] == "missing_resource"


def test_unanswered_group_path_is_reported_missing(fake_executor, monkeypatch) -> None:
    monkeypatch.setattr(
        fake_executor,
        "check_existence",
        lambda records, databases, paths: ExistenceReport(records={RECORD_A: True}),
    )
    queue = _queue(
        QueueTask(id=1, action="move", params={"uuid": RECORD_A, "destination": "/Nope/Missing"}),
    )

    report = verify_queue(queue, fake_executor)

    assert report.valid is False
    assert [issue.message for issue in report.issues] == [
        "Group path not found: /Nope/Missing (in current db)",
    ]
