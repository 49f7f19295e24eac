"""Action registry: required parameters per action with declared alias groups."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ParamRequirement:
    """One required parameter; any name in `names` satisfies it."""

    names: tuple[str, ...]

    @property
    def canonical(self) -> str:
        return self.names[0]

    def is_satisfied(self, params: Mapping[str, Any]) -> bool:
        return any(params.get(name) is not None for name in self.names)


@dataclass(frozen=True, slots=True)
class ActionContract:
    """Parameter schema for one action kind."""

    action: str
    required: tuple[ParamRequirement, ...]
    batchable: bool = False

    def missing_params(self, params: Mapping[str, Any]) -> list[str]:
        return [req.canonical for req in self.required if not req.is_satisfied(params)]


def _req(*names: str) -> ParamRequirement:
    return ParamRequirement(names=names)


RECORD_IDS = _req("uuid", "uuids")
TAG_NAMES = _req("tags", "tag")

ACTION_CONTRACTS: dict[str, ActionContract] = {
    contract.action: contract
    for contract in (
        ActionContract("create", (_req("type"), _req("name"))),
        ActionContract("delete", (RECORD_IDS,), batchable=True),
        ActionContract("move", (RECORD_IDS, _req("destination")), batchable=True),
        ActionContract("modify", (RECORD_IDS,), batchable=True),
        ActionContract("replicate", (_req("uuid"), _req("destination"))),
        ActionContract("duplicate", (_req("uuid"), _req("destination"))),
        ActionContract("tag.add", (RECORD_IDS, TAG_NAMES), batchable=True),
        ActionContract("tag.remove", (RECORD_IDS, TAG_NAMES), batchable=True),
        ActionContract("tag.set", (RECORD_IDS, TAG_NAMES), batchable=True),
        ActionContract("tag.merge", (_req("target"), _req("sources"))),
        ActionContract("tag.rename", (_req("from"), _req("to"))),
        ActionContract("tag.delete", (_req("tag", "tags"),)),
        ActionContract("chat", (_req("prompt", "promptRecord"),)),
        ActionContract("link", (_req("source"), _req("target"))),
        ActionContract("unlink", (_req("source"), _req("target"))),
        ActionContract("search", (_req("query"),)),
    )
}

BATCHABLE_ACTIONS: frozenset[str] = frozenset(
    name for name, contract in ACTION_CONTRACTS.items() if contract.batchable
)


def get_contract(action: str) -> ActionContract | None:
    return ACTION_CONTRACTS.get(action)


def is_known_action(action: str) -> bool:
    return action in ACTION_CONTRACTS


def is_batchable(action: str) -> bool:
    return action in BATCHABLE_ACTIONS


def supported_actions() -> list[str]:
    return sorted(ACTION_CONTRACTS)
