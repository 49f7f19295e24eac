"""Action Executor implementations."""

from dt_queue.queue.bridge.base import (
    ActionExecutor,
    ExistenceReport,
    ExternalCallError,
    ItemOutcome,
    ModifyItem,
    MoveItem,
    PathSpec,
    TagItem,
)
from dt_queue.queue.bridge.cli_bridge import CliBridgeExecutor

__all__ = [
    "ActionExecutor",
    "CliBridgeExecutor",
    "ExistenceReport",
    "ExternalCallError",
    "ItemOutcome",
    "ModifyItem",
    "MoveItem",
    "PathSpec",
    "TagItem",
]
