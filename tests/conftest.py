"""Shared test fixtures."""

from __future__ import annotations

import sys
from typing import Any

import pytest

from dt_queue.queue.bridge.base import (
    ExistenceReport,
    ItemOutcome,
    ModifyItem,
    MoveItem,
    PathSpec,
    TagItem,
)
from dt_queue.queue.engine import QueueEngine
from dt_queue.queue.store import InMemoryQueueStore

ECHO_BRIDGE_COMMAND_TEMPLATE = (
    f"{sys.executable} -m dt_queue.queue.bridge.echo_bridge {{script}} {{args}}"
)


class FakeActionExecutor:
    """Records every call; ids listed in `missing` fail per item and do not exist."""

    def __init__(self, *, missing: set[str] | None = None) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.missing = set(missing or ())
        self.failures: dict[str, Exception] = {}
        self.perform_results: dict[str, dict[str, Any]] = {}
        self.ai_response: Any = "[]"

    def move(self, items: list[MoveItem]) -> list[ItemOutcome]:
        self.calls.append(("move", items))
        return self._outcomes("move", [item.id for item in items])

    def delete(self, ids: list[str]) -> list[ItemOutcome]:
        self.calls.append(("delete", ids))
        return self._outcomes("delete", ids)

    def modify(self, items: list[ModifyItem]) -> list[ItemOutcome]:
        self.calls.append(("modify", items))
        return self._outcomes("modify", [item.id for item in items])

    def tag(self, items: list[TagItem]) -> list[ItemOutcome]:
        self.calls.append(("tag", items))
        return self._outcomes("tag", [item.id for item in items])

    def perform(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((action, params))
        self._raise_if_configured(action)
        return self.perform_results.get(action, {"success": True, "action": action})

    def check_existence(
        self,
        records: list[str],
        databases: list[str],
        paths: list[PathSpec],
    ) -> ExistenceReport:
        self.calls.append(("check_existence", (records, databases, paths)))
        return ExistenceReport(
            records={record: record not in self.missing for record in records},
            databases={database: database not in self.missing for database in databases},
            paths={spec.key: spec.path not in self.missing for spec in paths},
        )

    def ai_complete(self, prompt: str, *, engine: str, format: str) -> Any:
        self.calls.append(("ai_complete", {"prompt": prompt, "engine": engine, "format": format}))
        self._raise_if_configured("ai_complete")
        return self.ai_response

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _outcomes(self, name: str, ids: list[str]) -> list[ItemOutcome]:
        self._raise_if_configured(name)
        return [
            ItemOutcome(id=item_id, ok=False, error="Record not found")
            if item_id in self.missing
            else ItemOutcome(id=item_id, ok=True, result={"status": "ok"})
            for item_id in ids
        ]

    def _raise_if_configured(self, name: str) -> None:
        failure = self.failures.get(name)
        if failure is not None:
            raise failure


@pytest.fixture()
def fake_executor() -> FakeActionExecutor:
    return FakeActionExecutor()


@pytest.fixture()
def memory_store() -> InMemoryQueueStore:
    return InMemoryQueueStore()


@pytest.fixture()
def engine(memory_store: InMemoryQueueStore, fake_executor: FakeActionExecutor) -> QueueEngine:
    return QueueEngine(
        store=memory_store,
        executor=fake_executor,
        lock_retries=2,
        lock_retry_delay_seconds=0,
        sleep=lambda _: None,
    )


@pytest.fixture()
def echo_bridge_env(monkeypatch, tmp_path):
    """Point the CLI at a temp config dir and the local echo bridge."""

    config_dir = tmp_path / "dt"
    monkeypatch.setenv("DT_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("DT_BRIDGE_COMMAND_TEMPLATE", ECHO_BRIDGE_COMMAND_TEMPLATE)
    monkeypatch.setenv("DT_QUEUE_LOCK_RETRY_DELAY_SECONDS", "0")
    monkeypatch.delenv("DT_BRIDGE_SCRIPTS_DIR", raising=False)
    monkeypatch.delenv("DT_STATE_FILE", raising=False)
    return config_dir
