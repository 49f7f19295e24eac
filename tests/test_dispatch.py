from __future__ import annotations

import allure
import pytest

from dt_queue.queue.bridge.base import ExternalCallError, ModifyItem, MoveItem, TagItem
from dt_queue.queue.dispatch import UnitMember, dispatch_batched, dispatch_single, record_ids
from dt_queue.queue.models import QueueTask

pytestmark = [
    allure.epic("Queue Engine"),
    allure.feature("Action Dispatch"),
]


def _member(task_id: int, action: str, **params) -> UnitMember:
    return UnitMember(task=QueueTask(id=task_id, action=action, params=params), params=params)


def test_record_ids_prefers_uuids_over_uuid() -> None:
    assert record_ids({"uuids": ["A", "B"], "uuid": "C"}) == ["A", "B"]
    assert record_ids({"uuid": "C"}) == ["C"]
    assert record_ids({}) == []


def test_batched_move_reshapes_items_and_maps_results(fake_executor) -> None:
    outcomes = dispatch_batched(
        fake_executor,
        "move",
        [
            _member(1, "move", uuid="A-1", destination="/x"),
            _member(2, "move", uuids=["B-2", "C-3"], destination="/y"),
        ],
    )

    assert fake_executor.calls == [
        (
            "move",
            [
                MoveItem(id="A-1", destination="/x"),
                MoveItem(id="B-2", destination="/y"),
                MoveItem(id="C-3", destination="/y"),
            ],
        ),
    ]
    assert outcomes[1].ok is True
    assert outcomes[1].result == {"uuid": "A-1", "status": "ok"}
    assert outcomes[2].result["uuids"] == ["B-2", "C-3"]


def test_task_fails_when_any_of_its_items_fails(fake_executor) -> None:
    fake_executor.missing = {"C-3"}

    outcomes = dispatch_batched(
        fake_executor,
        "delete",
        [_member(1, "delete", uuid="A-1"), _member(2, "delete", uuids=["B-2", "C-3"])],
    )

    assert fake_executor.calls == [("delete", ["A-1", "B-2", "C-3"])]
    assert outcomes[1].ok is True
    assert outcomes[2].ok is False
    assert outcomes[2].error == "C-3: Record not found"


def test_modify_flattens_nested_properties(fake_executor) -> None:
    dispatch_batched(
        fake_executor,
        "modify",
        [_member(1, "modify", uuid="A-1", name="New", properties={"comment": "c"})],
    )

    assert fake_executor.calls == [
        ("modify", [ModifyItem(id="A-1", properties={"name": "New", "comment": "c"})]),
    ]


def test_tag_items_carry_operation(fake_executor) -> None:
    dispatch_batched(fake_executor, "tag.set", [_member(1, "tag.set", uuid="A-1", tag="solo")])

    assert fake_executor.calls == [("tag", [TagItem(id="A-1", tags=["solo"], operation="set")])]


def test_member_without_ids_is_rejected(fake_executor) -> None:
    with pytest.raises(ValueError, match="Missing uuid"):
        dispatch_batched(fake_executor, "delete", [_member(4, "delete", uuid=None)])

    assert fake_executor.calls == []


def test_outcome_count_mismatch_is_external_error(fake_executor, monkeypatch) -> None:
    monkeypatch.setattr(fake_executor, "delete", lambda ids: [])

    with pytest.raises(ExternalCallError, match="0 outcomes for 1"):
        dispatch_batched(fake_executor, "delete", [_member(1, "delete", uuid="A-1")])


@pytest.mark.parametrize(
    ("action", "params", "expected"),
    [
        (
            "duplicate",
            {"uuid": "A-1", "destination": "G-1"},
            {"records": ["A-1"], "to": "G-1", "mode": "duplicate"},
        ),
        (
            "link",
            {"source": "A-1", "target": "B-2"},
            {"source": "A-1", "target": "B-2", "operation": "link"},
        ),
        (
            "tag.rename",
            {"from": "old", "to": "new"},
            {"database": None, "from": "old", "to": "new", "dryRun": False},
        ),
        (
            "chat",
            {"prompt": "Summarize", "records": ["A-1"], "thinking": False, "ignored": 1},
            {"prompt": "Summarize", "records": ["A-1"], "thinking": False},
        ),
        ("search", {"query": "invoice"}, {"query": "invoice", "database": "", "limit": 50}),
        (
            "create",
            {"type": "markdown", "name": "n"},
            {"type": "markdown", "name": "n"},
        ),
    ],
)
def test_single_payload_shapes(fake_executor, action, params, expected) -> None:
    dispatch_single(fake_executor, action, params)

    assert fake_executor.calls == [(action, expected)]


def test_tag_delete_requires_tags(fake_executor) -> None:
    with pytest.raises(ValueError, match="Missing tag"):
        dispatch_single(fake_executor, "tag.delete", {"database": "Inbox"})
