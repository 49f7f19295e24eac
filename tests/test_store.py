from __future__ import annotations

import json
import os

import allure
import pytest

from dt_queue.queue.contracts import new_queue_document
from dt_queue.queue.models import QueueTask, TaskStatus
from dt_queue.queue.store import (
    FileQueueStore,
    InMemoryQueueStore,
    LockUnavailable,
    QueueStoreError,
    acquire_lock,
    queue_lock,
)

pytestmark = [
    allure.epic("Queue Engine"),
    allure.feature("Queue Store & Locking"),
]


def _queue_with_tasks():
    queue = new_queue_document()
    queue.tasks = [
        QueueTask(id=1, action="delete", params={"uuid": "A-1"}, status=TaskStatus.COMPLETED),
        QueueTask(id=2, action="delete", params={"uuid": "B-2"}, status=TaskStatus.FAILED),
        QueueTask(id=3, action="delete", params={"uuid": "C-3"}),
    ]
    return queue


def test_load_missing_document_returns_fresh_queue(tmp_path) -> None:
    store = FileQueueStore(tmp_path / "queue.json")

    queue = store.load()

    assert queue.tasks == []
    assert not (tmp_path / "queue.json").exists()


def test_load_whitespace_document_returns_fresh_queue(tmp_path) -> None:
    path = tmp_path / "queue.json"
    path.write_text("  \n", "utf-8")

    assert FileQueueStore(path).load().tasks == []


def test_corrupt_document_raises_store_error(tmp_path) -> None:
    path = tmp_path / "queue.json"
    path.write_text("{not json", "utf-8")

    with pytest.raises(QueueStoreError, match="Corrupt queue document"):
        FileQueueStore(path).load()


def test_save_then_load_preserves_tasks_and_recomputes_summary(tmp_path) -> None:
    store = FileQueueStore(tmp_path / "queue.json")
    queue = _queue_with_tasks()
    queue.summary.total = 99

    store.save(queue)
    loaded = store.load()
    on_disk = json.loads((tmp_path / "queue.json").read_text("utf-8"))

    assert [task.id for task in loaded.tasks] == [1, 2, 3]
    assert [task.status for task in loaded.tasks] == [
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.PENDING,
    ]
    assert on_disk["summary"] == {"total": 3, "pending": 1, "completed": 1, "failed": 1}


def test_delete_tolerates_absence(tmp_path) -> None:
    store = FileQueueStore(tmp_path / "queue.json")
    store.save(new_queue_document())

    store.delete()
    store.delete()

    assert not (tmp_path / "queue.json").exists()


def test_file_lock_is_exclusive_and_holds_pid(tmp_path) -> None:
    store = FileQueueStore(tmp_path / "queue.json")
    other = FileQueueStore(tmp_path / "queue.json")

    assert store.try_lock() is True
    assert other.try_lock() is False
    assert (tmp_path / "queue.lock").read_text("utf-8") == str(os.getpid())

    store.unlock()
    store.unlock()
    assert other.try_lock() is True


def test_acquire_lock_retries_then_fails() -> None:
    store = InMemoryQueueStore()
    store.locked = True
    delays: list[float] = []

    with pytest.raises(LockUnavailable, match="after 3 attempts"):
        acquire_lock(store, max_retries=3, retry_delay_seconds=0.25, sleep=delays.append)

    assert delays == [0.25, 0.25]


def test_acquire_lock_succeeds_once_holder_releases() -> None:
    store = InMemoryQueueStore()
    store.locked = True

    def _release(_: float) -> None:
        store.unlock()

    acquire_lock(store, max_retries=3, retry_delay_seconds=0, sleep=_release)

    assert store.locked is True


def test_queue_lock_released_when_block_raises(tmp_path) -> None:
    store = FileQueueStore(tmp_path / "queue.json")

    with pytest.raises(RuntimeError, match="boom"), queue_lock(store, sleep=lambda _: None):
        assert store.lock_path.exists()
        raise RuntimeError("boom")

    assert not store.lock_path.exists()


def test_in_memory_store_isolates_saved_documents() -> None:
    store = InMemoryQueueStore()
    queue = _queue_with_tasks()
    store.save(queue)

    queue.tasks.clear()

    assert len(store.load().tasks) == 3
    assert store.save_count == 1
