"""Action Executor interface consumed by the queue engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class ExternalCallError(RuntimeError):
    """The automation bridge could not perform a call."""


@dataclass(slots=True)
class MoveItem:
    id: str
    destination: str


@dataclass(slots=True)
class ModifyItem:
    id: str
    properties: dict[str, Any]


@dataclass(slots=True)
class TagItem:
    id: str
    tags: list[str]
    operation: str


@dataclass(slots=True)
class ItemOutcome:
    """Per-item status returned by batched calls, in request order."""

    id: str
    ok: bool
    result: dict[str, Any] | None = None
    error: str | None = None


@dataclass(slots=True)
class PathSpec:
    database: str | None
    path: str

    @property
    def key(self) -> str:
        return f"{self.database or ''}::{self.path}"


@dataclass(slots=True)
class ExistenceReport:
    """Existence map for one combined verification call."""

    records: dict[str, bool] = field(default_factory=dict)
    databases: dict[str, bool] = field(default_factory=dict)
    paths: dict[str, bool] = field(default_factory=dict)


class ActionExecutor(Protocol):
    """Operations against the managed content store; one call per dispatched unit."""

    def move(self, items: list[MoveItem]) -> list[ItemOutcome]:
        """Move records to destination groups."""

    def delete(self, ids: list[str]) -> list[ItemOutcome]:
        """Delete records."""

    def modify(self, items: list[ModifyItem]) -> list[ItemOutcome]:
        """Update record properties."""

    def tag(self, items: list[TagItem]) -> list[ItemOutcome]:
        """Add, remove or set record tags."""

    def perform(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        """Run one non-batchable action and return its result payload."""

    def check_existence(
        self,
        records: list[str],
        databases: list[str],
        paths: list[PathSpec],
    ) -> ExistenceReport:
        """Report which referenced resources exist."""

    def ai_complete(self, prompt: str, *, engine: str, format: str) -> Any:
        """Ask the AI-completion collaborator; returns text or structured data."""
